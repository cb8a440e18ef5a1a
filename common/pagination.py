from rest_framework.pagination import CursorPagination, PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """Shared pagination behavior for list endpoints.

    Clients can tune page size with `?page_size=` (or `?limit=`) but values are
    capped at 100 to keep payload sizes predictable.
    """

    page_size_query_param = "page_size"
    max_page_size = 100

    def get_page_size(self, request):
        if self.page_size_query_param not in request.query_params and "limit" in request.query_params:
            try:
                requested = int(request.query_params["limit"])
            except (TypeError, ValueError):
                return self.page_size
            return min(max(requested, 1), self.max_page_size)
        return super().get_page_size(request)


class ActivityLogCursorPagination(CursorPagination):
    """Newest-first cursor pages for the append-only activity log."""

    page_size = 20
    ordering = ("-created_at", "-id")
