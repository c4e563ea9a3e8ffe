"""Plain-text extraction for ``text/*`` content types."""

from __future__ import annotations

from presales_core.interfaces.text_extraction_provider import ITextExtractionProvider


class PlainTextExtractor(ITextExtractionProvider):
    """Decodes ``text/*`` payloads as UTF-8, replacing undecodable bytes."""

    async def extract(self, data: bytes, content_type: str) -> str:
        return data.decode("utf-8", errors="replace")

    def supports(self, content_type: str) -> bool:
        return content_type.split(";", 1)[0].strip().lower().startswith("text/")

    def get_provider_name(self) -> str:
        return "plain-text"
