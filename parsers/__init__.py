"""
Upload file parsers module.
"""

from parsers.tabular_parser import (
    parse_tabular,
    ParsedTable,
)

__all__ = [
    "parse_tabular",
    "ParsedTable",
]
