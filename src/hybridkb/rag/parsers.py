"""Document parsers.

``TextDocumentParser`` decodes plain-text uploads. PDF and Word documents
are read with ``pypdf`` and ``python-docx`` (the 'documents' extra), loaded
on first use. ``DocumentParser`` picks the parser by file extension.
"""

import asyncio
import io
from pathlib import PurePath
from typing import Optional

from .base import BaseDocumentParser
from .document import ParsedDocument
from .exceptions import ParseError, UnsupportedFileTypeError


def _extension(filename: str) -> str:
    return PurePath(filename).suffix.lower()


class TextDocumentParser(BaseDocumentParser):
    """Decode UTF-8 text files."""

    SUPPORTED_EXTENSIONS = {
        ".txt": "text",
        ".md": "markdown",
        ".markdown": "markdown",
        ".rst": "text",
        ".log": "text",
        ".csv": "csv",
        ".tsv": "csv",
        ".json": "json",
    }

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def supports(self, filename: str) -> bool:
        return _extension(filename) in self.SUPPORTED_EXTENSIONS

    async def parse(self, data: bytes, filename: str) -> ParsedDocument:
        """Decode the file and report its type and word count."""
        if not self.supports(filename):
            raise UnsupportedFileTypeError(filename)

        try:
            text = data.decode(self.encoding)
        except UnicodeDecodeError as e:
            raise ParseError(filename, f"not valid {self.encoding} text ({e})") from e

        # Strip a leading byte-order mark
        text = text.lstrip("﻿")

        return ParsedDocument(
            content=text,
            metadata={
                "type": self.SUPPORTED_EXTENSIONS[_extension(filename)],
                "total_words": len(text.split()),
            },
        )


class PdfDocumentParser(BaseDocumentParser):
    """Extract page text from PDF files.

    Requires the 'documents' extra (pypdf).
    """

    def supports(self, filename: str) -> bool:
        return _extension(filename) == ".pdf"

    def _read(self, data: bytes, filename: str) -> ParsedDocument:
        try:
            import pypdf
        except ImportError:
            raise ImportError(
                "PDF parsing requires 'pypdf'. "
                "Install it with: pip install pypdf"
            )

        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
            info = reader.metadata
        except Exception as e:
            raise ParseError(filename, str(e)) from e

        text = "\n".join(pages)
        metadata = {
            "type": "pdf",
            "page_count": len(pages),
            "total_words": len(text.split()),
        }
        if info is not None:
            if info.title:
                metadata["title"] = str(info.title)
            if info.author:
                metadata["author"] = str(info.author)

        return ParsedDocument(content=text, metadata=metadata)

    async def parse(self, data: bytes, filename: str) -> ParsedDocument:
        if not self.supports(filename):
            raise UnsupportedFileTypeError(filename)

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._read, data, filename)


class DocxDocumentParser(BaseDocumentParser):
    """Extract paragraph text from Word documents.

    Requires the 'documents' extra (python-docx).
    """

    def supports(self, filename: str) -> bool:
        return _extension(filename) == ".docx"

    def _read(self, data: bytes, filename: str) -> ParsedDocument:
        try:
            from docx import Document as DocxDocument
        except ImportError:
            raise ImportError(
                "Word parsing requires 'python-docx'. "
                "Install it with: pip install python-docx"
            )

        try:
            doc = DocxDocument(io.BytesIO(data))
        except Exception as e:
            raise ParseError(filename, str(e)) from e

        # Blank paragraphs keep the document's paragraph breaks
        text = "\n\n".join(p.text for p in doc.paragraphs if p.text.strip())
        return ParsedDocument(
            content=text,
            metadata={"type": "docx", "total_words": len(text.split())},
        )

    async def parse(self, data: bytes, filename: str) -> ParsedDocument:
        if not self.supports(filename):
            raise UnsupportedFileTypeError(filename)

        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, self._read, data, filename)


class DocumentParser(BaseDocumentParser):
    """Dispatch to the first parser that supports the file's extension."""

    def __init__(self, parsers: Optional[list[BaseDocumentParser]] = None):
        self.parsers = parsers or [
            TextDocumentParser(),
            PdfDocumentParser(),
            DocxDocumentParser(),
        ]

    def _parser_for(self, filename: str) -> Optional[BaseDocumentParser]:
        return next((p for p in self.parsers if p.supports(filename)), None)

    def supports(self, filename: str) -> bool:
        return self._parser_for(filename) is not None

    async def parse(self, data: bytes, filename: str) -> ParsedDocument:
        parser = self._parser_for(filename)
        if parser is None:
            raise UnsupportedFileTypeError(filename)
        return await parser.parse(data, filename)
