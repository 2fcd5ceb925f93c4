DEFAULT_CACHE_CONTROL = "no-cache, private"


class DefaultCacheControlMiddleware:
    """Marks every response uncacheable unless the view set its own policy."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        response = self.get_response(request)
        if not response.has_header("Cache-Control"):
            response["Cache-Control"] = DEFAULT_CACHE_CONTROL
        return response
