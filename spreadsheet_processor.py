"""
Spreadsheet Processor for Dataset Uploads
Turns uploaded CSV/Excel files into row dictionaries and validates dataset structure
"""
import csv
import io
import os
import re
from typing import Any, Dict, Iterable, List, Optional

from openpyxl import Workbook, load_workbook


ALLOWED_EXTENSIONS = {'.xlsx', '.xls', '.csv'}
EXCEL_EXTENSIONS = {'.xlsx', '.xls'}

REQUIRED_DATASET_SHEETS = ['Theory Courses', 'Lab Courses', 'Faculty', 'Load Dist', 'Batch Details', 'Venue']
DATASET_NAME_PATTERN = re.compile(r'^[A-Za-z]+\d+_Dataset\.xlsx$')

# Column layout used by the downloadable dataset template
DATASET_TEMPLATE_COLUMNS = {
    'Theory Courses': ['Course code', 'Course name', 'Credits', 'Branch', 'Division'],
    'Lab Courses': ['Course code', 'Course name', 'Credits', 'Branch', 'Division'],
    'Faculty': ['Name', 'Course', 'Branch', 'Division'],
    'Load Dist': ['Name', 'Course', 'Hours', 'Branch', 'Division'],
    'Batch Details': ['Batch', 'Strength', 'Branch', 'Division'],
    'Venue': ['Room Number', 'Capacity', 'Type'],
}


class ValidationError(ValueError):
    """Raised when an uploaded file is rejected."""


class ParseError(ValidationError):
    """Raised when a CSV file cannot be turned into rows."""


def get_extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower()


def allowed_file(filename: str) -> bool:
    return get_extension(filename) in ALLOWED_EXTENSIONS


def read_csv_rows(file_stream) -> List[Dict[str, str]]:
    """
    Read a CSV file into a list of row dictionaries.

    Args:
        file_stream: Binary file-like object

    Returns:
        One dictionary per non-blank data line, keyed by the header row.
        Every header is present in every row; short lines are padded with ''.

    Raises:
        ParseError: If the file is not UTF-8 text, is not well-formed CSV,
            or has no data line after the header
    """
    try:
        text = file_stream.read().decode('utf-8-sig').strip()
    except UnicodeDecodeError as exc:
        raise ParseError(f'File is not UTF-8 encoded ({exc.reason} at byte {exc.start})') from exc

    lines = text.splitlines()
    if len(lines) < 2:
        raise ParseError('CSV file must have at least a header and one data row')

    reader = csv.reader(line for line in lines if line.strip())
    rows = []
    try:
        headers = [h.strip().replace('"', '') for h in next(reader)]
        for values in reader:
            values = [v.strip().replace('"', '') for v in values]
            rows.append({header: values[i] if i < len(values) else '' for i, header in enumerate(headers)})
    except csv.Error as exc:
        raise ParseError(f'Malformed CSV on line {reader.line_num}: {exc}') from exc
    return rows


def _cell_text(value: Any) -> str:
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def read_sheet_rows(sheet) -> List[Dict[str, str]]:
    """
    Read one worksheet into row dictionaries.
    The first row holds the headers; fully blank rows are skipped.
    """
    rows_iter = sheet.iter_rows(values_only=True)
    try:
        headers = next(rows_iter)
    except StopIteration:
        return []

    headers = [_cell_text(h) or f'column_{i}' for i, h in enumerate(headers)]

    rows = []
    for row_values in rows_iter:
        if all(value is None or _cell_text(value) == '' for value in row_values):
            continue
        # Read-only sheets may hand back short rows when trailing cells are empty
        row_dict = {}
        for i, header in enumerate(headers):
            row_dict[header] = _cell_text(row_values[i] if i < len(row_values) else None)
        rows.append(row_dict)
    return rows


def open_workbook(file_stream):
    """
    Open a workbook in read-only mode.

    Raises:
        ValidationError: If the stream is not a readable workbook
    """
    try:
        return load_workbook(file_stream, read_only=True, data_only=True)
    except Exception as exc:
        raise ValidationError('Invalid Excel file format or corrupted file.') from exc


def read_workbook_sheets(file_stream, names: Optional[Iterable[str]] = None) -> Dict[str, List[Dict[str, str]]]:
    """
    Read every sheet of a workbook, or only the requested sheets that exist.
    Keys keep the workbook's sheet order.
    """
    workbook = open_workbook(file_stream)
    try:
        wanted = None if names is None else set(names)
        sheets = {}
        for sheet_name in workbook.sheetnames:
            if wanted is not None and sheet_name not in wanted:
                continue
            sheets[sheet_name] = read_sheet_rows(workbook[sheet_name])
        return sheets
    finally:
        workbook.close()


def detect_data_type(sample: Dict[str, Any]) -> str:
    """Guess what a sheet holds from its column names."""
    keys = [str(k).lower() for k in sample.keys()]

    if any('teacher' in k or 'faculty' in k or 'instructor' in k for k in keys):
        return 'faculty'
    if any('subject' in k or 'course' in k for k in keys):
        return 'subjects'
    if any('room' in k or 'classroom' in k or 'venue' in k for k in keys):
        return 'rooms'
    return 'students'


def categorize_workbook(sheets: Dict[str, List[Dict[str, str]]]) -> Dict[str, List[Dict[str, str]]]:
    """
    Map recognised sheets onto the subjects/faculty/rooms/students categories.
    Falls back to sniffing the first sheet's headers when no sheet name is recognised.
    """
    parsed = {}
    if 'Theory Courses' in sheets:
        parsed['subjects'] = list(sheets['Theory Courses'])
    if 'Lab Courses' in sheets:
        parsed['subjects'] = parsed.get('subjects', []) + sheets['Lab Courses']
    if 'Faculty' in sheets:
        parsed['faculty'] = sheets['Faculty']
    if 'Venue' in sheets:
        parsed['rooms'] = sheets['Venue']
    if 'Batch Details' in sheets:
        parsed['students'] = sheets['Batch Details']

    if not parsed and sheets:
        first_rows = next(iter(sheets.values()))
        if first_rows:
            parsed[detect_data_type(first_rows[0])] = first_rows
    return parsed


def parse_file(filename: str, file_stream) -> Dict[str, List[Dict[str, str]]]:
    """
    Parse a stored upload into categorised row collections.

    Raises:
        ValidationError: If file type is not supported or the content is unreadable
    """
    extension = get_extension(filename)

    if extension == '.csv':
        rows = read_csv_rows(file_stream)
        if not rows:
            return {}
        return {detect_data_type(rows[0]): rows}
    if extension in EXCEL_EXTENSIONS:
        return categorize_workbook(read_workbook_sheets(file_stream))
    raise ValidationError('Unsupported file type. Upload CSV or Excel (.xlsx, .xls) files only.')


def get_missing_sheets(available_sheets: Iterable[str], required_sheets: List[str]) -> List[str]:
    """
    Get the required sheet names that are not present, in required order.
    """
    available = set(available_sheets)
    return [name for name in required_sheets if name not in available]


def validate_upload(filename: str, file_stream) -> None:
    """
    Check that an uploaded file is structurally usable.

    CSV files must parse and contain data. Excel files must open and contain
    at least one sheet; files named like ``DS1_Dataset.xlsx`` must also carry
    every sheet in REQUIRED_DATASET_SHEETS.

    Raises:
        ValidationError: With a message suitable for the client
    """
    extension = get_extension(filename)

    if extension == '.csv':
        try:
            rows = read_csv_rows(file_stream)
        except ParseError as exc:
            raise ValidationError(f'Invalid CSV file: {exc}') from exc
        if not rows:
            raise ValidationError('CSV file contains no data.')
        return

    if extension not in EXCEL_EXTENSIONS:
        raise ValidationError('Only Excel files (.xlsx, .xls) and CSV files are allowed!')

    workbook = open_workbook(file_stream)
    try:
        sheet_names = list(workbook.sheetnames)
    finally:
        workbook.close()

    if not sheet_names:
        raise ValidationError('Excel file contains no sheets.')

    if DATASET_NAME_PATTERN.match(filename):
        missing = get_missing_sheets(sheet_names, REQUIRED_DATASET_SHEETS)
        if missing:
            raise ValidationError(f'Missing required sheets: {", ".join(missing)}')


def build_dataset_template() -> io.BytesIO:
    """Create an empty dataset workbook with every required sheet and its header row."""
    workbook = Workbook()
    workbook.remove(workbook.active)
    for sheet_name in REQUIRED_DATASET_SHEETS:
        sheet = workbook.create_sheet(sheet_name)
        sheet.append(DATASET_TEMPLATE_COLUMNS[sheet_name])

    mem = io.BytesIO()
    workbook.save(mem)
    workbook.close()
    mem.seek(0)
    return mem
