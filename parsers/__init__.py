"""
Import file parsers.
"""

from parsers.import_file_parser import (
    parse_import_file,
    ImportFileParseResult,
    SUPPORTED_EXTENSIONS,
)

__all__ = [
    "parse_import_file",
    "ImportFileParseResult",
    "SUPPORTED_EXTENSIONS",
]
