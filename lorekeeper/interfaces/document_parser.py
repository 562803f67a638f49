"""Abstract base class for document parsers (raw bytes -> plain text)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from lorekeeper.models.knowledge import ParsedDocument, SourceKind


# Concrete implementation: DocumentParser (lorekeeper/providers/parser/)
class IDocumentParser(ABC):
    """Contract for extracting text from an uploaded document."""

    @abstractmethod
    async def parse(self, buffer: bytes, source_kind: SourceKind) -> ParsedDocument:
        """Extract normalized text and parser metadata from *buffer*.

        Raises
        ------
        lorekeeper.utils.errors.ParserError
            If the buffer is empty, malformed, or of an unsupported kind.
        """

    @abstractmethod
    def supports(self, source_kind: SourceKind) -> bool:
        """Return ``True`` if *source_kind* can be parsed."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"document_parser"``."""
