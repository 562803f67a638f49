"""Document parser: raw upload bytes to normalized plain text.

Supported kinds:

* ``PDF``      -- PyMuPDF (``fitz``) page text, plus the document-info fields.
* ``MARKDOWN`` -- UTF-8 text with Markdown syntax stripped by regex.
* ``URL``      -- an HTML payload, or a bare ``http(s)://`` URL which is
                  fetched with httpx first; main content extracted by
                  trafilatura.
* ``TEXT``     -- UTF-8 text as-is.

Every result is whitespace-normalized (runs of whitespace collapse to one
space, ends trimmed) so the chunker sees the same text for the same input.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import httpx
import structlog
import trafilatura

from lorekeeper.interfaces.document_parser import IDocumentParser
from lorekeeper.models.knowledge import ParsedDocument, SourceKind
from lorekeeper.utils.errors import ParserError

logger = structlog.get_logger(logger_name=__name__)

PDF_SIGNATURE = b"%PDF"

_DEFAULT_TIMEOUT = 15.0
_DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; lorekeeper/0.1)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}

# PyMuPDF document-info keys worth keeping.
_PDF_INFO_KEYS = (
    "title",
    "author",
    "subject",
    "keywords",
    "creator",
    "producer",
    "creationDate",
    "modDate",
)

# Applied in order.  Code is unwrapped first so emphasis markers inside it
# survive; images precede links because ``![alt](src)`` contains a link.
_MARKDOWN_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"```[a-zA-Z0-9_+-]{0,20}\n?(.*?)```", re.DOTALL), r"\1"),
    (re.compile(r"`([^`\n]+)`"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^\s{0,3}(?:\*{3,}|-{3,}|_{3,})\s*$", re.MULTILINE), ""),
    (re.compile(r"^\s{0,3}>\s?", re.MULTILINE), ""),
    (re.compile(r"^\s{0,10}[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^\s{0,10}\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"!\[([^\]]{0,200})\]\([^)]{1,500}\)"), r"\1"),
    (re.compile(r"\[([^\]]{1,500})\]\(([^)]{1,500})\)"), r"\1 (\2)"),
    (re.compile(r"(\*\*|__)(.+?)\1"), r"\2"),
    (re.compile(r"(?<![\w*])[*_]([^*_\n]+)[*_](?![\w*])"), r"\1"),
    (re.compile(r"~~([^~\n]+)~~"), r"\1"),
]

_WHITESPACE = re.compile(r"\s+")
_BARE_URL = re.compile(r"^https?://\S+$", re.IGNORECASE)


class DocumentParser(IDocumentParser):
    """Parses PDF, Markdown, HTML/URL and plain-text buffers.

    Parameters
    ----------
    http_client:
        Client used to fetch bare URLs.  One is created (and owned) when
        omitted.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None) -> None:
        self._owns_client = http_client is None
        self._client = http_client

    # ------------------------------------------------------------------
    # IDocumentParser implementation
    # ------------------------------------------------------------------

    def supports(self, source_kind: SourceKind) -> bool:
        return source_kind in (
            SourceKind.PDF,
            SourceKind.MARKDOWN,
            SourceKind.URL,
            SourceKind.TEXT,
        )

    async def parse(self, buffer: bytes, source_kind: SourceKind) -> ParsedDocument:
        if not buffer:
            raise ParserError(
                message="Document buffer is empty",
                provider_name=self.get_provider_name(),
            )

        if source_kind is SourceKind.PDF:
            text, extra = self._parse_pdf(buffer)
        elif source_kind is SourceKind.MARKDOWN:
            text, extra = strip_markdown(self._decode(buffer, source_kind)), {}
        elif source_kind is SourceKind.URL:
            text, extra = await self._parse_html(self._decode(buffer, source_kind))
        elif source_kind is SourceKind.TEXT:
            text, extra = self._decode(buffer, source_kind), {}
        else:
            raise ParserError(
                message=f"Unsupported source kind: {source_kind}",
                provider_name=self.get_provider_name(),
            )

        metadata: dict[str, Any] = {
            "source_kind": source_kind.value,
            "parsed_at": datetime.now(timezone.utc).isoformat(),
            "original_size": len(buffer),
            **extra,
        }
        content = normalize_whitespace(text)

        logger.info(
            "document_parsed",
            source_kind=source_kind.value,
            original_size=len(buffer),
            text_length=len(content),
        )
        return ParsedDocument(text=content, metadata=metadata)

    def get_provider_name(self) -> str:
        return "document_parser"

    async def close(self) -> None:
        """Close the HTTP client if this parser created it."""
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Format handlers
    # ------------------------------------------------------------------

    def _parse_pdf(self, buffer: bytes) -> tuple[str, dict[str, Any]]:
        if not is_pdf_buffer(buffer):
            raise ParserError(
                message="Buffer does not start with the %PDF signature",
                provider_name=self.get_provider_name(),
            )
        try:
            doc = fitz.open(stream=buffer, filetype="pdf")
        except Exception as exc:
            raise ParserError(
                message=f"Failed to parse PDF: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        try:
            pages = [doc[i].get_text("text") for i in range(doc.page_count)]
            raw_info = doc.metadata or {}
            page_count = doc.page_count
        finally:
            doc.close()

        info = {
            key: str(raw_info[key])
            for key in _PDF_INFO_KEYS
            if raw_info.get(key)
        }
        return "\n\n".join(pages), {"pages": page_count, "info": info}

    async def _parse_html(self, payload: str) -> tuple[str, dict[str, Any]]:
        extra: dict[str, Any] = {}
        stripped = payload.strip()
        if _BARE_URL.match(stripped):
            extra["url"] = stripped
            payload = await self._fetch(stripped)

        text = trafilatura.extract(payload, include_comments=False, include_tables=True)
        if not text:
            raise ParserError(
                message="No readable content found in HTML",
                provider_name=self.get_provider_name(),
            )

        raw_meta = trafilatura.extract(
            payload,
            include_comments=False,
            output_format="json",
            with_metadata=True,
        )
        if raw_meta:
            try:
                meta = json.loads(raw_meta)
            except json.JSONDecodeError:
                logger.debug("html_metadata_parse_failed")
            else:
                for key in ("title", "author", "date"):
                    if meta.get(key):
                        extra[key] = meta[key]
        return text, extra

    async def _fetch(self, url: str) -> str:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(_DEFAULT_TIMEOUT),
                headers=_DEFAULT_HEADERS,
                follow_redirects=True,
            )
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ParserError(
                message=f"HTTP {exc.response.status_code} for {url}",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise ParserError(
                message=f"HTTP error fetching {url}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("url_fetched", url=url, status=response.status_code)
        return response.text

    def _decode(self, buffer: bytes, source_kind: SourceKind) -> str:
        try:
            return buffer.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParserError(
                message=f"{source_kind.value} payload is not valid UTF-8: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def is_pdf_buffer(buffer: bytes) -> bool:
    """Return ``True`` if *buffer* starts with the PDF signature."""
    return buffer[: len(PDF_SIGNATURE)] == PDF_SIGNATURE


def strip_markdown(markdown: str) -> str:
    """Remove Markdown syntax, keeping the readable text (and link targets)."""
    result = markdown
    for pattern, replacement in _MARKDOWN_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()
