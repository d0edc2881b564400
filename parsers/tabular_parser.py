"""
Tabular parser for import uploads.

Reads delimited text (CSV/TSV/semicolon) or the first sheet of an .xlsx
workbook into ordered column names and rows of raw strings. Nothing is
validated against a target entity here; that happens after mapping.
"""

import csv
from dataclasses import dataclass, field
from io import BytesIO, StringIO
from typing import Optional
import structlog

import pandas as pd

from exceptions import MalformedFileError
from utils.text_utils import clean_cell

logger = structlog.get_logger(__name__)

SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm", ".xls")
SPREADSHEET_CONTENT_TYPES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel.sheet.macroenabled.12",
    "application/vnd.ms-excel",
)
CANDIDATE_DELIMITERS = ",;\t|"

ZIP_MAGIC = b"PK"
OLE2_MAGIC = b"\xd0\xcf\x11\xe0"


@dataclass
class ParsedTable:
    """Result of parsing an uploaded file."""
    columns: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)
    row_numbers: list[int] = field(default_factory=list)
    source_format: str = "delimited"

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def sample(self, limit: int) -> list[dict[str, str]]:
        """First rows, for the operator preview."""
        return [dict(r) for r in self.rows[:limit]]


def parse_tabular(
    content: bytes,
    filename: Optional[str] = None,
    content_type: Optional[str] = None,
) -> ParsedTable:
    """
    Parse an uploaded file into columns and rows.

    Args:
        content: Raw file bytes
        filename: Original file name (used for format detection)
        content_type: Declared MIME type (used for format detection)

    Returns:
        ParsedTable with the header row as columns and one dict per data row.
        Missing cells are "" and fully blank rows are dropped.

    Raises:
        MalformedFileError: If the file is empty, has no header row,
            has duplicate headers, or cannot be read
    """
    logger.info(
        "parsing_tabular_file",
        filename=filename,
        content_type=content_type,
        size_bytes=len(content or b""),
    )

    if not content or not content.strip():
        raise MalformedFileError("Uploaded file is empty")

    has_spreadsheet_magic = content.startswith(ZIP_MAGIC) or content.startswith(OLE2_MAGIC)

    if has_spreadsheet_magic or _declared_spreadsheet(filename, content_type):
        try:
            frame = _read_spreadsheet(content)
            table = _table_from_frame(frame, source_format="spreadsheet")
            _log_parsed(table, filename)
            return table
        except MalformedFileError:
            raise
        except Exception as e:
            if has_spreadsheet_magic:
                logger.error("spreadsheet_read_failed", filename=filename, error=str(e))
                raise MalformedFileError(
                    "Failed to read spreadsheet. Please upload a valid .xlsx or CSV file.",
                    details={"original_error": str(e)}
                )
            # Declared as a spreadsheet but not one; retry as text
            logger.warning("spreadsheet_fallback_to_delimited", filename=filename, error=str(e))

    frame = _read_delimited(content)
    table = _table_from_frame(frame, source_format="delimited")
    _log_parsed(table, filename)
    return table


# ===================
# HELPER FUNCTIONS
# ===================

def _declared_spreadsheet(filename: Optional[str], content_type: Optional[str]) -> bool:
    if filename and filename.lower().endswith(SPREADSHEET_EXTENSIONS):
        return True
    return bool(content_type and content_type.lower() in SPREADSHEET_CONTENT_TYPES)


def _read_spreadsheet(content: bytes) -> pd.DataFrame:
    """Read the first sheet as strings, without treating any row as header."""
    if content.startswith(OLE2_MAGIC):
        raise MalformedFileError(
            "Legacy .xls workbooks are not supported. Save the file as .xlsx or CSV."
        )

    return pd.read_excel(
        BytesIO(content),
        sheet_name=0,
        header=None,
        dtype=str,
        engine="openpyxl",
    )


def _decode_text(content: bytes) -> str:
    """Decode delimited text, honouring BOMs and falling back to latin-1."""
    if content.startswith((b"\xff\xfe", b"\xfe\xff")):
        return content.decode("utf-16")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug("utf8_decode_failed_using_latin1")
        return content.decode("latin-1")


def _detect_delimiter(text: str) -> str:
    """Sniff the delimiter from the first lines; comma when unsure."""
    sample = "\n".join(text.splitlines()[:20])
    try:
        return csv.Sniffer().sniff(sample, delimiters=CANDIDATE_DELIMITERS).delimiter
    except csv.Error:
        return ","


def _read_delimited(content: bytes) -> pd.DataFrame:
    text = _decode_text(content)
    if not text.strip():
        raise MalformedFileError("Uploaded file is empty")

    delimiter = _detect_delimiter(text)

    try:
        # Ragged rows (e.g. a trailing delimiter) get room up to the widest row;
        # cells past the header are dropped when the table is built
        width = max((len(r) for r in csv.reader(StringIO(text), delimiter=delimiter)), default=0)
        if width == 0:
            raise MalformedFileError("Uploaded file is empty")

        return pd.read_csv(
            StringIO(text),
            sep=delimiter,
            header=None,
            names=list(range(width)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            engine="python",
        )
    except pd.errors.EmptyDataError:
        raise MalformedFileError("Uploaded file is empty")
    except (pd.errors.ParserError, csv.Error) as e:
        logger.error("delimited_read_failed", delimiter=delimiter, error=str(e))
        raise MalformedFileError(
            "Failed to parse file. Please ensure it is a valid CSV or Excel file.",
            details={"original_error": str(e), "delimiter": delimiter}
        )


def _table_from_frame(frame: pd.DataFrame, source_format: str) -> ParsedTable:
    """Turn a header-less frame into columns (row 1) and data rows."""
    if frame.empty:
        raise MalformedFileError("The uploaded file does not contain a header row.")

    frame = frame.fillna("")
    header_cells = [clean_cell(v) for v in frame.iloc[0].tolist()]

    # Blank header cells are unnamed columns; their data is not importable
    positions = [i for i, name in enumerate(header_cells) if name]
    if not positions:
        raise MalformedFileError("The uploaded file does not contain a header row.")

    columns = [header_cells[i] for i in positions]
    duplicates = sorted({c for c in columns if columns.count(c) > 1})
    if duplicates:
        raise MalformedFileError(
            "The header row contains duplicate column names.",
            details={"duplicates": duplicates}
        )

    table = ParsedTable(columns=columns, source_format=source_format)

    # Row numbers are 1-based file rows; the header is row 1
    for row_number, values in enumerate(frame.iloc[1:].itertuples(index=False, name=None), start=2):
        record = {name: clean_cell(values[i]) for name, i in zip(columns, positions)}
        if not any(record.values()):
            continue
        table.rows.append(record)
        table.row_numbers.append(row_number)

    return table


def _log_parsed(table: ParsedTable, filename: Optional[str]) -> None:
    logger.info(
        "tabular_file_parsed",
        filename=filename,
        source_format=table.source_format,
        column_count=len(table.columns),
        row_count=table.total_rows,
    )
