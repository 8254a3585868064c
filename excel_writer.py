"""
Spreadsheet generation for normalized payloads.

Writes a ``NormalizedTable`` to a single-sheet ``.xlsx`` workbook with
pandas (openpyxl engine) and then styles it with openpyxl: a bold white
header on a blue fill, thin borders on every cell and clamped column
widths.
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, List, Tuple

import pandas as pd
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from payload_normalizer import ColumnDefinition, NormalizedTable, json_text

logger = logging.getLogger(__name__)

XLSX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

SHEET_TITLE = "ChatGPT Data"
WORKBOOK_CREATOR = "ChatGPT Excel API"
EXPORT_FILENAME_PREFIX = "chatgpt_export_"

MIN_COLUMN_WIDTH = 10
MAX_COLUMN_WIDTH = 100

HEADER_FILL_COLOR = "366092"
HEADER_FONT = Font(bold=True, color="FFFFFF")
HEADER_FILL = PatternFill(fill_type="solid", start_color=HEADER_FILL_COLOR, end_color=HEADER_FILL_COLOR)
_THIN = Side(style="thin")
CELL_BORDER = Border(top=_THIN, left=_THIN, bottom=_THIN, right=_THIN)


def clamp_width(width: int) -> int:
    """Clamp a column width to the allowed display range."""
    return max(MIN_COLUMN_WIDTH, min(MAX_COLUMN_WIDTH, width))


def _clean_text(value: str) -> str:
    # openpyxl rejects control characters other than tab, newline and carriage return
    return ILLEGAL_CHARACTERS_RE.sub("", value)


def _cell_value(value: Any) -> Any:
    # openpyxl only accepts scalars; nested structures are written as JSON text
    if isinstance(value, (dict, list)):
        value = json_text(value)
    if isinstance(value, str):
        return _clean_text(value)
    return value


def build_dataframe(table: NormalizedTable) -> pd.DataFrame:
    """
    Build the DataFrame written to the sheet.

    Columns are the table's column keys in order; row values missing a key
    are left empty.

    Args:
        table: Normalized payload

    Returns:
        pandas.DataFrame: One row per record, one column per column definition
    """
    keys = [column.key for column in table.columns]
    if not keys:
        return pd.DataFrame()
    records = [[_cell_value(row.get(key)) for key in keys] for row in table.rows]
    return pd.DataFrame(records, columns=keys, dtype=object)


def style_worksheet(worksheet: Worksheet, columns: List[ColumnDefinition]) -> None:
    """
    Apply header styling, cell borders and column widths.

    Cells whose text starts with ``=`` are typed as plain strings so they
    are never evaluated as formulas.

    Args:
        worksheet: Sheet written by pandas, header in row 1
        columns: Column definitions in sheet order
    """
    if columns:
        for cell in worksheet[1]:
            cell.font = HEADER_FONT
            cell.fill = HEADER_FILL

    for row in worksheet.iter_rows():
        for cell in row:
            cell.border = CELL_BORDER
            # Text starting with "=" is content, not a formula
            if isinstance(cell.value, str) and cell.value.startswith("="):
                cell.data_type = "s"

    for index, column in enumerate(columns, start=1):
        worksheet.column_dimensions[get_column_letter(index)].width = clamp_width(column.width)


class SpreadsheetWriter:
    """
    Writes normalized tables to uniquely named workbooks.

    Attributes:
        output_dir: Directory receiving the generated files
    """

    def __init__(self, output_dir: str):
        self.output_dir = output_dir

    def write(self, table: NormalizedTable) -> Tuple[str, str]:
        """
        Write the table to a new workbook.

        Args:
            table: Normalized payload

        Returns:
            Tuple[str, str]: (filename, absolute file path)

        Raises:
            OSError: If the output directory or file cannot be written
        """
        os.makedirs(self.output_dir, exist_ok=True)
        filename = f"{EXPORT_FILENAME_PREFIX}{uuid.uuid4()}.xlsx"
        filepath = os.path.abspath(os.path.join(self.output_dir, filename))

        df = build_dataframe(table)
        header = [_clean_text(column.header) for column in table.columns] if table.columns else False

        logger.debug("Writing workbook", extra={"file_path": filepath, "row_count": len(df)})
        with pd.ExcelWriter(filepath, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name=SHEET_TITLE, index=False, header=header)
            writer.book.properties.creator = WORKBOOK_CREATOR
            writer.book.properties.created = datetime.now(timezone.utc).replace(tzinfo=None)
            style_worksheet(writer.sheets[SHEET_TITLE], table.columns)

        logger.info(
            "Workbook written",
            extra={"file_path": filepath, "row_count": table.row_count, "column_count": len(table.columns)}
        )
        return filename, filepath
