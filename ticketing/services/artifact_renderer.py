# ticketing/services/artifact_renderer.py
from __future__ import annotations

from urllib.parse import quote

from ticketing.models.ticket import Ticket


class UrlArtifactRenderer:
    """
    默认渲染器：不真正生成图片 / PDF，只给出由外部渲染服务解析的 URL。
    真正的 QR / PDF 渲染是外部协作方，通过 ArtifactRenderer 协议替换。
    """

    def __init__(self, public_url: str) -> None:
        self._base = public_url.rstrip("/")

    async def render_qr(self, data: str) -> str:
        return f"{self._base}/artifacts/qr/{quote(data, safe='')}.png"

    async def render_pdf(self, ticket: Ticket) -> str:
        return f"{self._base}/artifacts/tickets/{quote(ticket.ticket_number, safe='')}.pdf"
