from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from django.test import TestCase
from rest_framework.test import APIClient

from common.audit import create_audit_log
from common.exceptions import ConcurrencyConflict, custom_exception_handler
from core.models import AuditLog, Vendor


class VendorScopedCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()

        self.vendor_a = Vendor.objects.create(code="VA", name="Vendor A")
        self.vendor_b = Vendor.objects.create(code="VB", name="Vendor B")

        self.clerk = self.user_model.objects.create_user(
            username="core-clerk",
            password="pass1234",
            vendor=self.vendor_a,
        )
        self.superuser = self.user_model.objects.create_superuser(
            username="core-root",
            password="pass1234",
            email="root@example.com",
        )
        self.unassigned = self.user_model.objects.create_user(username="core-nobody", password="pass1234")

    def test_user_only_sees_own_vendor(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/vendors/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        ids = {item["id"] for item in payload["results"]}
        self.assertEqual(ids, {str(self.vendor_a.id)})

    def test_other_vendor_detail_is_not_found(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get(f"/api/v1/vendors/{self.vendor_b.id}/")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_superuser_sees_every_vendor(self):
        self.client.force_authenticate(user=self.superuser)

        response = self.client.get("/api/v1/vendors/")

        ids = {item["id"] for item in response.json()["results"]}
        self.assertEqual(ids, {str(self.vendor_a.id), str(self.vendor_b.id)})

    def test_user_without_vendor_sees_nothing(self):
        self.client.force_authenticate(user=self.unassigned)

        response = self.client.get("/api/v1/vendors/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 0)

    def test_me_reports_vendor_and_capabilities(self):
        self.client.force_authenticate(user=self.clerk)

        response = self.client.get("/api/v1/vendors/me/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["role"], "clerk")
        self.assertEqual(body["vendor"]["code"], "VA")
        self.assertIn("purchasing.manage", body["capabilities"])
        self.assertNotIn("purchasing.settle", body["capabilities"])

    def test_anonymous_request_uses_error_envelope(self):
        response = self.client.get("/api/v1/vendors/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["status"], 401)


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.vendor = Vendor.objects.create(code="RP", name="Role Perm")
        self.manager = self.user_model.objects.create_user(
            username="manager-core",
            password="pass1234",
            vendor=self.vendor,
            role="manager",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            vendor=self.vendor,
            role="admin",
        )

    def test_manager_cannot_read_audit_logs_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.manager)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_admin_can_read_audit_logs(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/")

        self.assertEqual(response.status_code, 200)


class AuditLogTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.vendor = Vendor.objects.create(code="AL", name="Audit")
        self.other_vendor = Vendor.objects.create(code="AO", name="Audit Other")
        self.admin = self.user_model.objects.create_user(
            username="audit-admin",
            password="pass1234",
            vendor=self.vendor,
            role="admin",
        )

    def test_supplier_create_writes_audit_log_with_request_id(self):
        self.client.force_authenticate(user=self.admin)
        res = self.client.post(
            "/api/v1/suppliers/",
            {"external_name": "Delta Mills"},
            format="json",
            HTTP_X_REQUEST_ID="req-123",
        )

        self.assertEqual(res.status_code, 201)
        log = AuditLog.objects.get(action="supplier.create", request_id="req-123")
        self.assertEqual(log.entity, "supplier")
        self.assertEqual(log.vendor_id, self.vendor.id)
        self.assertEqual(log.actor_id, self.admin.id)
        self.assertEqual(log.after_snapshot["external_name"], "Delta Mills")

    def test_audit_logs_are_scoped_and_filterable(self):
        create_audit_log(vendor=self.vendor, action="stock.adjustment", entity="inventory_record")
        create_audit_log(vendor=self.vendor, action="purchase_order.create", entity="purchase_order")
        create_audit_log(vendor=self.other_vendor, action="stock.adjustment", entity="inventory_record")
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"action": "stock.adjustment"})

        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]["vendor"], str(self.vendor.id))

    def test_audit_log_filter_rejects_malformed_uuid(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/", {"entity_id": "not-a-uuid"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("entity_id", response.json()["errors"])

    def test_audit_logs_are_read_only(self):
        self.client.force_authenticate(user=self.admin)
        log = AuditLog.objects.create(action="test.action", entity="test", vendor=self.vendor, actor=self.admin)

        patch_res = self.client.patch(f"/api/v1/admin/audit-logs/{log.id}/", {"action": "changed"}, format="json")
        delete_res = self.client.delete(f"/api/v1/admin/audit-logs/{log.id}/")

        self.assertEqual(patch_res.status_code, 405)
        self.assertEqual(delete_res.status_code, 405)

    def test_audit_log_export_is_csv(self):
        create_audit_log(actor=self.admin, vendor=self.vendor, action="purchase_order.cancel", entity="purchase_order")
        self.client.force_authenticate(user=self.admin)

        response = self.client.get("/api/v1/admin/audit-logs/export/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().strip().splitlines()
        self.assertEqual(len(lines), 2)
        self.assertIn("purchase_order.cancel", lines[1])
        self.assertIn("audit-admin", lines[1])

    def test_anonymous_actor_is_not_recorded(self):
        log = create_audit_log(actor=None, vendor=self.vendor, action="purchase_order.create", entity="purchase_order")

        self.assertIsNone(log.actor_id)


class TokenAndHealthTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.vendor = Vendor.objects.create(code="TK", name="Token Vendor")
        self.user = get_user_model().objects.create_user(
            username="token-user",
            email="Token@Example.com",
            password="pass1234",
            vendor=self.vendor,
            role="manager",
        )

    def test_email_is_normalized_on_save(self):
        self.user.refresh_from_db()
        self.assertEqual(self.user.email, "token@example.com")

    def test_token_can_be_obtained_with_email(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "TOKEN@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())

    def test_healthz_echoes_request_id(self):
        response = self.client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="health-1")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "request_id": "health-1"})
        self.assertEqual(response["X-Request-ID"], "health-1")

    def test_readyz_reports_ready(self):
        response = self.client.get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class ErrorEnvelopeTests(TestCase):
    def test_concurrency_conflict_is_retryable(self):
        response = custom_exception_handler(ConcurrencyConflict(entity="inventory_record", entity_id=None), {})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response["Retry-After"], "1")
        self.assertEqual(response.data["code"], "concurrency_conflict")
        self.assertTrue(response.data["errors"]["retryable"])

    def test_unhandled_exception_is_logged_and_hidden(self):
        with self.assertLogs("common.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("boom"), {})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.data["code"], "internal_server_error")
        self.assertNotIn("boom", response.data["message"])

    def test_django_exceptions_get_stable_codes(self):
        not_found = custom_exception_handler(Http404("No PurchaseOrder matches the given query."), {})
        denied = custom_exception_handler(DjangoPermissionDenied(), {})

        self.assertEqual((not_found.status_code, not_found.data["code"]), (404, "not_found"))
        self.assertEqual((denied.status_code, denied.data["code"]), (403, "permission_denied"))
