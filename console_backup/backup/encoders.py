"""
Export encoders for collection backups.

Each encoder turns the rows of one collection into one artifact file:
- postgresql: SQL script (CREATE TABLE + INSERTs), gzip compressed (.sql.gz)
- mongodb: BSON document of remapped rows, gzip compressed (.bson.gz)
- excel: openpyxl workbook with a data sheet and a metadata sheet (.xlsx)

Artifacts are named {collection_id}_{timestamp}.{ext}; the timestamp may
carry a 'manual_' or 'test_' prefix chosen by the caller.
"""

import gzip
import json
import os
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

import bson
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE


SQL_BATCH_SIZE = 1000
EXCEL_CELL_LIMIT = 32767
EXCEL_SHEET_TITLE_LIMIT = 31
EMPTY_SHEET_PLACEHOLDER = 'No data available'
METADATA_SHEET_TITLE = 'Metadata'
SOURCE_LABEL = 'Appwrite Backup'

ARTIFACT_EXTENSIONS = ('.sql.gz', '.bson.gz', '.xlsx')

TIMESTAMP_FORMAT = '%Y-%m-%dT%H-%M-%S'


class EncodingError(Exception):
    """Raised when an export artifact cannot be written."""
    pass


def generate_timestamp(now: datetime = None) -> str:
    """
    Generate the filename timestamp for a run.

    Format: YYYY-MM-DDTHH-MM-SS (UTC ISO-8601 with ':' replaced, no fraction)
    """
    now = now or datetime.now(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


def _iso_now() -> str:
    return datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'


def is_artifact(filename: str) -> bool:
    """Check whether a filename carries one of the backup artifact extensions."""
    return filename.endswith(ARTIFACT_EXTENSIONS)


def strip_artifact_extension(filename: str) -> str:
    """
    Strip artifact extension from filename.

    Handles the two-part extensions .sql.gz and .bson.gz
    """
    for extension in ARTIFACT_EXTENSIONS:
        if filename.endswith(extension):
            return filename[:-len(extension)]
    return os.path.splitext(filename)[0]


def artifact_path(output_dir: str, collection_id: str, timestamp: str, extension: str) -> str:
    return os.path.join(output_dir, f"{collection_id}_{timestamp}{extension}")


def _write_artifact(filepath: str, writer: Callable[[str], None]) -> str:
    """
    Run writer(filepath), removing the partial file if it fails.

    Raises:
        EncodingError: Wrapping whatever the writer raised
    """
    try:
        writer(filepath)
        return filepath
    except Exception as e:
        if os.path.exists(filepath):
            try:
                os.remove(filepath)
            except OSError:
                pass
        raise EncodingError(f"Failed to write {os.path.basename(filepath)}: {e}") from e


# PostgreSQL


def sql_columns(rows: List[Dict[str, Any]]) -> List[str]:
    """
    Column list for the SQL dump.

    Taken from the first row only, without '$' metadata fields. Keys that
    appear only in later rows are not exported.
    """
    if not rows:
        return []
    return [key for key in rows[0].keys() if not key.startswith('$')]


def sql_literal(value: Any) -> str:
    """Render a value as a quoted SQL literal (or NULL)."""
    if value is None:
        return 'NULL'
    if isinstance(value, (dict, list)):
        text = json.dumps(value, separators=(',', ':'), ensure_ascii=False)
    elif isinstance(value, bool):
        text = 'true' if value else 'false'
    else:
        text = str(value)
    return "'" + text.replace("'", "''") + "'"


def _quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def iter_sql_statements(rows: List[Dict[str, Any]], collection_id: str):
    """Yield the SQL dump text for rows, one chunk per line."""
    yield f"-- Appwrite Collection: {collection_id}\n"
    yield f"-- Exported at: {_iso_now()}\n"
    yield f"-- Total records: {len(rows)}\n\n"

    if not rows:
        return

    columns = sql_columns(rows)
    table = _quote_identifier(collection_id)
    column_list = ', '.join(_quote_identifier(c) for c in columns)
    column_defs = ', '.join(f"{_quote_identifier(c)} TEXT" for c in columns)

    yield f"CREATE TABLE IF NOT EXISTS {table} ({column_defs});\n\n"

    for index, row in enumerate(rows):
        values = ', '.join(sql_literal(row.get(c)) for c in columns)
        yield f"INSERT INTO {table} ({column_list}) VALUES ({values});\n"

        # Batch commits for large datasets
        if (index + 1) % SQL_BATCH_SIZE == 0:
            yield 'COMMIT;\nBEGIN;\n'


def export_to_sql(rows: List[Dict[str, Any]], collection_id: str, timestamp: str,
                  output_dir: str) -> str:
    """
    Write a gzip-compressed PostgreSQL-style dump.

    Args:
        rows: Row records of the collection
        collection_id: Collection name (used as table name)
        timestamp: Filename timestamp, including any prefix
        output_dir: Tier directory to write into

    Returns:
        Path of the written .sql.gz file

    Raises:
        EncodingError: If the dump cannot be written
    """
    filepath = artifact_path(output_dir, collection_id, timestamp, '.sql.gz')

    def write(path):
        with gzip.open(path, 'wt', encoding='utf-8') as out:
            for chunk in iter_sql_statements(rows, collection_id):
                out.write(chunk)

    return _write_artifact(filepath, write)


# MongoDB


def to_document(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Remap a row into document-store shape.

    $id becomes _id; $createdAt/$updatedAt become createdAt/updatedAt.
    Other fields (including other '$' metadata) are kept as they are.
    """
    clean = {k: v for k, v in row.items() if k not in ('$id', '$createdAt', '$updatedAt')}
    document = {'_id': row.get('$id')}
    document.update(clean)
    document['createdAt'] = row.get('$createdAt')
    document['updatedAt'] = row.get('$updatedAt')
    return document


def export_to_bson(rows: List[Dict[str, Any]], collection_id: str, timestamp: str,
                   output_dir: str) -> str:
    """
    Write a gzip-compressed BSON dump of the remapped rows.

    The file holds a single BSON document {'data': [...]}.

    Returns:
        Path of the written .bson.gz file

    Raises:
        EncodingError: If serialization or writing fails
    """
    filepath = artifact_path(output_dir, collection_id, timestamp, '.bson.gz')

    def write(path):
        payload = bson.encode({'data': [to_document(row) for row in rows]})
        with gzip.open(path, 'wb') as out:
            out.write(payload)

    return _write_artifact(filepath, write)


# Excel


def sheet_title(name: str) -> str:
    """Make a worksheet title Excel accepts (max 31 chars, no []:*?/\\)."""
    title = re.sub(r'[\[\]:*?/\\]', '_', name).strip("'")
    return title[:EXCEL_SHEET_TITLE_LIMIT] or 'Sheet'


def excel_value(value: Any):
    """Convert a row value into something openpyxl can store in a cell."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, (dict, list)):
        value = json.dumps(value, ensure_ascii=False)
    else:
        value = str(value)
    value = ILLEGAL_CHARACTERS_RE.sub('', value)
    return value[:EXCEL_CELL_LIMIT]


def excel_headers(rows: List[Dict[str, Any]]) -> List[str]:
    """Union of all row keys, in the order they are first seen."""
    headers = []
    seen = set()
    for row in rows:
        for key in row.keys():
            if key not in seen:
                seen.add(key)
                headers.append(key)
    return headers


def append_row(ws, values: List[Any]):
    """
    Append a row of values as literal cells.

    openpyxl turns strings starting with '=' into formulas; those cells are
    reset to plain strings so exported text is never evaluated.
    """
    ws.append(values)
    for cell in ws[ws.max_row]:
        if cell.data_type == 'f':
            cell.data_type = 's'


def build_workbook(rows: List[Dict[str, Any]], collection_id: str) -> Workbook:
    """
    Build the export workbook.

    Sheet 1 (named after the collection) holds the rows, or a single
    placeholder cell when there are none. Sheet 2 is always 'Metadata'.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title(collection_id)

    if rows:
        headers = excel_headers(rows)
        append_row(ws, headers)
        for row in rows:
            append_row(ws, [excel_value(row.get(h)) for h in headers])
    else:
        ws.append([EMPTY_SHEET_PLACEHOLDER])

    meta = wb.create_sheet(METADATA_SHEET_TITLE)
    append_row(meta, ['Collection', collection_id])
    meta.append(['Total Records', len(rows)])
    meta.append(['Exported At', _iso_now()])
    meta.append(['Source', SOURCE_LABEL])

    return wb


def export_to_excel(rows: List[Dict[str, Any]], collection_id: str, timestamp: str,
                    output_dir: str) -> str:
    """
    Write an uncompressed .xlsx workbook.

    Returns:
        Path of the written .xlsx file

    Raises:
        EncodingError: If the workbook cannot be written
    """
    filepath = artifact_path(output_dir, collection_id, timestamp, '.xlsx')

    def write(path):
        build_workbook(rows, collection_id).save(path)

    return _write_artifact(filepath, write)


# Format name -> (extension, encoder); iteration order is the run order
ENCODERS: Dict[str, tuple] = {
    'postgresql': ('.sql.gz', export_to_sql),
    'mongodb': ('.bson.gz', export_to_bson),
    'excel': ('.xlsx', export_to_excel),
}


def enabled_formats(formats_config: Dict[str, bool] = None) -> List[str]:
    """
    Return enabled format names in run order.

    Args:
        formats_config: Mapping of format name to enabled flag (None enables all)

    Raises:
        ValueError: If the mapping names an unknown format
    """
    if formats_config is None:
        return list(ENCODERS.keys())

    unknown = set(formats_config) - set(ENCODERS)
    if unknown:
        raise ValueError(
            f"Invalid export format(s): {sorted(unknown)}. "
            f"Valid options: {list(ENCODERS.keys())}"
        )

    return [name for name in ENCODERS if formats_config.get(name, False)]
