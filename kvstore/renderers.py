from rest_framework.renderers import BaseRenderer


class OctetStreamRenderer(BaseRenderer):
    """Renders a raw byte payload unchanged."""

    media_type = "application/octet-stream"
    format = "bin"
    charset = None
    render_style = "binary"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        if data is None:
            return b""
        return bytes(data)
