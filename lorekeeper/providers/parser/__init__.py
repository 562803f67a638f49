"""Document parser implementation (PDF, Markdown, HTML/URL, plain text)."""

from lorekeeper.providers.parser.document_parser import DocumentParser

__all__ = ["DocumentParser"]
