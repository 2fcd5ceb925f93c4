from rest_framework.exceptions import NotAcceptable
from rest_framework.negotiation import DefaultContentNegotiation


class FallbackContentNegotiation(DefaultContentNegotiation):
    """
    Content negotiation that never answers 406.

    Binary clients send ``Accept: application/octet-stream`` to every value
    URL, including ones that only ever answer with a redirect or a small JSON
    document. Those requests get the view's first renderer instead of being
    refused before the handler runs.
    """

    def select_renderer(self, request, renderers, format_suffix=None):
        try:
            return super().select_renderer(request, renderers, format_suffix)
        except NotAcceptable:
            renderer = renderers[0]
            return renderer, renderer.media_type
