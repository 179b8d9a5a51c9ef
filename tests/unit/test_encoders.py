"""
Unit tests for export encoders (console_backup/backup/encoders.py).

Tests SQL, BSON and Excel artifacts and the shared helpers.
"""

import gzip
import os
from datetime import datetime, timezone
from unittest.mock import patch

import bson
import pytest
from freezegun import freeze_time
from openpyxl import load_workbook

from console_backup.backup.encoders import (
    EMPTY_SHEET_PLACEHOLDER,
    ENCODERS,
    EncodingError,
    enabled_formats,
    excel_headers,
    export_to_bson,
    export_to_excel,
    export_to_sql,
    generate_timestamp,
    is_artifact,
    iter_sql_statements,
    sheet_title,
    sql_columns,
    sql_literal,
    strip_artifact_extension,
    to_document,
)


class TestHelpers:
    """Test timestamp and filename helpers."""

    def test_generate_timestamp_format(self):
        """Test timestamp replaces ':' and drops milliseconds."""
        now = datetime(2024, 1, 15, 14, 30, 5, 123000, tzinfo=timezone.utc)

        assert generate_timestamp(now) == '2024-01-15T14-30-05'

    def test_timestamp_starts_with_date(self):
        """Test first ten characters are the calendar date."""
        now = datetime(2024, 12, 31, 23, 59, 59, tzinfo=timezone.utc)

        assert generate_timestamp(now)[:10] == '2024-12-31'

    def test_is_artifact(self):
        assert is_artifact('posts_2024-01-15T02-00-00.sql.gz')
        assert is_artifact('posts_2024-01-15T02-00-00.bson.gz')
        assert is_artifact('posts_2024-01-15T02-00-00.xlsx')
        assert not is_artifact('backup_2024-01-15T02-00-00.json')
        assert not is_artifact('.tier.lock')

    def test_strip_artifact_extension(self):
        """Test two-part extensions are removed whole."""
        assert strip_artifact_extension('posts_ts.sql.gz') == 'posts_ts'
        assert strip_artifact_extension('posts_ts.bson.gz') == 'posts_ts'
        assert strip_artifact_extension('posts_ts.xlsx') == 'posts_ts'

    def test_registry_order(self):
        """Test encoders run in postgresql, mongodb, excel order."""
        assert list(ENCODERS.keys()) == ['postgresql', 'mongodb', 'excel']

    def test_enabled_formats_filters_disabled(self):
        formats = enabled_formats({'postgresql': True, 'mongodb': False, 'excel': True})

        assert formats == ['postgresql', 'excel']

    def test_enabled_formats_defaults_to_all(self):
        assert enabled_formats() == ['postgresql', 'mongodb', 'excel']

    def test_enabled_formats_rejects_unknown(self):
        with pytest.raises(ValueError, match='Invalid export format'):
            enabled_formats({'csv': True})


class TestSqlEncoder:
    """Test PostgreSQL dump generation."""

    def test_columns_from_first_row_only(self):
        """Test keys appearing only in later rows are dropped."""
        rows = [{'$id': '1', 'a': 1, 'b': 2}, {'$id': '2', 'a': 3, 'c': 4}]

        assert sql_columns(rows) == ['a', 'b']

    def test_columns_empty_rows(self):
        assert sql_columns([]) == []

    def test_sql_literal_values(self):
        """Test literal rendering for each value kind."""
        assert sql_literal(None) == 'NULL'
        assert sql_literal("O'Reilly") == "'O''Reilly'"
        assert sql_literal(True) == "'true'"
        assert sql_literal(False) == "'false'"
        assert sql_literal(42) == "'42'"
        assert sql_literal({'k': [1, 2]}) == '\'{"k":[1,2]}\''

    def test_statements(self):
        """Test table definition and inserts, with missing keys as NULL."""
        rows = [{'$id': '1', 'a': 'x', 'b': 1}, {'$id': '2', 'a': 'y'}]

        text = ''.join(iter_sql_statements(rows, 'posts'))

        assert '-- Appwrite Collection: posts' in text
        assert '-- Total records: 2' in text
        assert 'CREATE TABLE IF NOT EXISTS "posts" ("a" TEXT, "b" TEXT);' in text
        assert 'INSERT INTO "posts" ("a", "b") VALUES (\'x\', \'1\');' in text
        assert 'INSERT INTO "posts" ("a", "b") VALUES (\'y\', NULL);' in text
        assert '$id' not in text.split('CREATE TABLE')[1]

    def test_batches_every_thousand_rows(self, rows_factory):
        """Test COMMIT/BEGIN emitted after every 1000th row."""
        text = ''.join(iter_sql_statements(rows_factory(2500), 'big'))

        assert text.count('INSERT INTO') == 2500
        assert text.count('COMMIT;\nBEGIN;\n') == 2

    def test_empty_rows_header_only(self):
        text = ''.join(iter_sql_statements([], 'empty'))

        assert '-- Total records: 0' in text
        assert 'CREATE TABLE' not in text

    def test_export_to_sql_gzip(self, tmp_path, rows_factory):
        """Test the file is gzip text with one INSERT per row."""
        path = export_to_sql(rows_factory(3), 'posts', '2024-01-15T02-00-00', str(tmp_path))

        assert os.path.basename(path) == 'posts_2024-01-15T02-00-00.sql.gz'
        with gzip.open(path, 'rt', encoding='utf-8') as f:
            content = f.read()
        assert content.count('INSERT INTO "posts"') == 3


class TestBsonEncoder:
    """Test MongoDB dump generation."""

    def test_to_document_remaps_metadata(self):
        row = {
            '$id': 'abc',
            '$createdAt': '2024-01-01',
            '$updatedAt': '2024-01-02',
            '$permissions': ['read("any")'],
            'title': 'Hello',
        }

        doc = to_document(row)

        assert doc['_id'] == 'abc'
        assert doc['createdAt'] == '2024-01-01'
        assert doc['updatedAt'] == '2024-01-02'
        assert doc['title'] == 'Hello'
        assert '$id' not in doc
        assert doc['$permissions'] == ['read("any")']

    def test_to_document_does_not_mutate_row(self):
        row = {'$id': 'abc', 'title': 'Hello'}

        to_document(row)

        assert row == {'$id': 'abc', 'title': 'Hello'}

    def test_export_to_bson_round_trip_count(self, tmp_path, rows_factory):
        """Test decompressed document holds one entry per row."""
        path = export_to_bson(rows_factory(5), 'posts', 'manual_2024-01-15T02-00-00', str(tmp_path))

        assert os.path.basename(path) == 'posts_manual_2024-01-15T02-00-00.bson.gz'
        with gzip.open(path, 'rb') as f:
            decoded = bson.decode(f.read())
        assert len(decoded['data']) == 5
        assert decoded['data'][0]['_id'] == 'row1'


class TestExcelEncoder:
    """Test Excel workbook generation."""

    def test_sheet_title_sanitized(self):
        assert sheet_title('a/b:c') == 'a_b_c'
        assert len(sheet_title('x' * 40)) == 31

    def test_headers_union_in_first_seen_order(self):
        rows = [{'a': 1, 'b': 2}, {'c': 3, 'a': 4}]

        assert excel_headers(rows) == ['a', 'b', 'c']

    def test_export_to_excel(self, tmp_path, posts_rows):
        """Test data sheet holds header plus rows and metadata sheet follows."""
        path = export_to_excel(posts_rows, 'posts', '2024-01-15T02-00-00', str(tmp_path))

        wb = load_workbook(path)
        assert wb.sheetnames == ['posts', 'Metadata']

        ws = wb['posts']
        assert ws.max_row == 4
        header = [cell.value for cell in ws[1]]
        assert header[:2] == ['$id', '$createdAt']
        tags_col = header.index('tags')
        assert ws.cell(row=2, column=tags_col + 1).value == '["a", "b"]'

        meta = {row[0]: row[1] for row in wb['Metadata'].iter_rows(values_only=True)}
        assert meta['Collection'] == 'posts'
        assert meta['Total Records'] == 3
        assert meta['Source'] == 'Appwrite Backup'

    def test_empty_workbook_structure(self, tmp_path):
        """Test empty input gives a placeholder cell and the metadata sheet."""
        path = export_to_excel([], 'empty_collection', '2024-01-15T02-00-00', str(tmp_path))

        wb = load_workbook(path)
        assert wb.sheetnames == ['empty_collection', 'Metadata']
        ws = wb['empty_collection']
        assert ws.max_row == 1
        assert ws['A1'].value == EMPTY_SHEET_PLACEHOLDER

    def test_empty_workbook_repeatable(self, tmp_path):
        """Test two empty exports differ only in the export time."""
        def contents(path):
            wb = load_workbook(path)
            return {
                name: [row for row in wb[name].iter_rows(values_only=True) if row[0] != 'Exported At']
                for name in wb.sheetnames
            }

        first = export_to_excel([], 'empty_collection', '2024-01-15T02-00-00', str(tmp_path))
        with freeze_time('2024-01-16 02:00:00'):
            second = export_to_excel([], 'empty_collection', '2024-01-16T02-00-00', str(tmp_path))

        with open(first, 'rb') as a, open(second, 'rb') as b:
            assert a.read() != b.read()
        assert load_workbook(first).sheetnames == load_workbook(second).sheetnames
        assert contents(first) == contents(second)

    def test_formula_text_kept_as_string(self, tmp_path):
        """Test values starting with '=' are stored as text, not formulas."""
        rows = [{'$id': 'p1', 'title': '=HYPERLINK("http://x","y")', 'note': '=1+1'}]

        path = export_to_excel(rows, 'posts', 'ts', str(tmp_path))

        ws = load_workbook(path)['posts']
        assert ws.cell(row=2, column=2).data_type == 's'
        assert ws.cell(row=2, column=2).value == '=HYPERLINK("http://x","y")'
        assert ws.cell(row=2, column=3).data_type == 's'
        assert ws.cell(row=2, column=3).value == '=1+1'

    def test_illegal_characters_stripped(self, tmp_path):
        path = export_to_excel([{'note': 'bad\x07value'}], 'notes', 'ts', str(tmp_path))

        ws = load_workbook(path)['notes']
        assert ws['A2'].value == 'badvalue'


class TestEncoderFailures:
    """Test failures raise EncodingError and leave no partial file."""

    def test_unwritable_directory(self, tmp_path, rows_factory):
        missing = tmp_path / 'does-not-exist'

        with pytest.raises(EncodingError):
            export_to_sql(rows_factory(1), 'posts', 'ts', str(missing))

    @patch('console_backup.backup.encoders.bson.encode')
    def test_partial_file_removed(self, mock_encode, tmp_path, rows_factory):
        """Test the partially written artifact is deleted."""
        mock_encode.side_effect = ValueError('cannot encode')

        with pytest.raises(EncodingError, match='cannot encode'):
            export_to_bson(rows_factory(1), 'posts', 'ts', str(tmp_path))

        assert os.listdir(tmp_path) == []
