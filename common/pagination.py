from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Page-number pagination for every list endpoint (ledger rows, movements, purchase orders).

    ``?page_size=`` is honoured up to ``max_page_size``; the default comes from
    ``REST_FRAMEWORK["PAGE_SIZE"]``.
    """

    page_size_query_param = "page_size"
    max_page_size = 500
