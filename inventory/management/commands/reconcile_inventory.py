from django.core.management.base import BaseCommand, CommandError
from django.db.models import Sum

from inventory.models import InventoryRecord, InventoryReservation


class Command(BaseCommand):
    help = "Compare each inventory record with its stock movement history and report over-reserved stock."

    def add_arguments(self, parser):
        parser.add_argument("--vendor-code", help="Only check records belonging to this vendor code.")

    def handle(self, *args, **options):
        records = InventoryRecord.objects.select_related("product", "location").annotate(movement_total=Sum("movements__quantity"))
        reservations = InventoryReservation.objects.filter(status=InventoryReservation.Status.ACTIVE)
        vendor_code = options.get("vendor_code")
        if vendor_code:
            records = records.filter(vendor__code=vendor_code)
            reservations = reservations.filter(vendor__code=vendor_code)

        reserved = {
            (row["product_id"], row["location_id"]): row["total"]
            for row in reservations.values("product_id", "location_id").annotate(total=Sum("quantity"))
        }

        mismatches = 0
        over_reserved = 0
        checked = 0
        for record in records.order_by("location__name", "product__sku"):
            checked += 1
            label = f"{record.product.sku} @ {record.location.name}"
            movement_total = record.movement_total or 0
            if movement_total != record.quantity:
                mismatches += 1
                self.stdout.write(self.style.ERROR(f"- {label}: quantity {record.quantity} but movements sum to {movement_total}"))

            available = record.quantity - reserved.pop((record.product_id, record.location_id), 0)
            if available < 0:
                over_reserved += 1
                self.stdout.write(self.style.WARNING(f"- {label}: over-reserved, available to promise {available}"))

        # Holds against keys that have never had stock.
        for (product_id, location_id), total in reserved.items():
            over_reserved += 1
            self.stdout.write(self.style.WARNING(f"- product {product_id} @ location {location_id}: no stock, {total} reserved"))

        self.stdout.write(f"Checked {checked} inventory record(s); {over_reserved} over-reserved key(s).")
        if mismatches:
            raise CommandError(f"Found {mismatches} inventory record(s) that disagree with their movement history.")
        self.stdout.write(self.style.SUCCESS("Inventory records match their movement history."))
