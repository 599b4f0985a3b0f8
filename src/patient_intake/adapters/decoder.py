"""Upload Decoder Adapter.

Normalizes uploaded content (raw bytes, a text string, or a base64 data URI
as sent by browser uploads) to bytes and hands it to the parser matching the
file name.

Security Impact:
    - Decoded size is capped to bound memory use per upload
    - Invalid base64 is rejected with a ParseError

Architecture:
    - Implements FileDecoderPort (Hexagonal Architecture)
    - Parser selection is delegated to ``get_parser``
"""

import base64
import binascii
import logging
import re
from typing import Callable, Optional, Union

from patient_intake.adapters.parsers import get_parser
from patient_intake.domain.models import ParsedTable
from patient_intake.domain.ports import FileDecoderPort, ParseError, TableParserPort

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 50 * 1024 * 1024
DATA_URI_PREFIX = re.compile(r"^data:[^,]*?;base64,", re.IGNORECASE)


class FileDecoder(FileDecoderPort):
    """Decodes uploads and parses them into a ParsedTable.

    Parameters:
        max_file_size: Largest accepted decoded size in bytes
        parser_factory: Maps a file name to a TableParserPort
    """

    def __init__(
        self,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        parser_factory: Optional[Callable[[str], TableParserPort]] = None,
    ):
        self.max_file_size = max_file_size
        self.parser_factory = parser_factory or get_parser

    def decode(self, content: Union[bytes, str], filename: str = "") -> bytes:
        """Return the raw file bytes behind ``content``.

        Raises:
            ParseError: If the content is empty, oversized or bad base64
        """
        if content is None:
            raise ParseError(f"File {filename} is empty", source=filename)

        if isinstance(content, (bytes, bytearray)):
            data = bytes(content)
            if data[:5].lower() == b"data:":
                content = data.decode("ascii", errors="replace")
            else:
                return self._check_size(data, filename)

        text = content.strip()
        match = DATA_URI_PREFIX.match(text)
        if match:
            try:
                data = base64.b64decode(text[match.end():], validate=False)
            except (binascii.Error, ValueError) as e:
                raise ParseError(f"File {filename} has invalid base64 content: {e}", source=filename) from e
            logger.debug(f"Decoded data URI upload {filename} ({len(data)} bytes)")
            return self._check_size(data, filename)

        return self._check_size(content.encode("utf-8"), filename)

    def parse(self, content: Union[bytes, str], filename: str) -> ParsedTable:
        """Decode ``content`` and parse it with the parser for ``filename``.

        Raises:
            ParseError: If the content cannot be decoded or yields no rows
        """
        data = self.decode(content, filename)
        if not data.strip():
            raise ParseError(f"File {filename} is empty", source=filename)

        parser = self.parser_factory(filename)
        logger.info(f"Parsing {filename} with {parser.__class__.__name__}")
        return parser.parse(data, filename)

    def _check_size(self, data: bytes, filename: str) -> bytes:
        if len(data) > self.max_file_size:
            raise ParseError(
                f"File {filename} is {len(data)} bytes, above the {self.max_file_size} byte limit",
                source=filename,
                details={"size": len(data), "limit": self.max_file_size},
            )
        return data
