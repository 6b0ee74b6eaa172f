#!/usr/bin/env python3
"""
Tests for locating and decoding the Parquet footer.
"""

import os
import shutil
import struct
import sys
import tempfile
import unittest

import pyarrow.parquet as pq

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from parquet_fixtures import ParquetFileGenerator, RecordingSource

from parquet2json.errors import MalformedFooterError
from parquet2json.footer import (
    DICTIONARY_PADDING,
    _needs_dictionary_padding,
    fetch_metadata,
    parse_footer,
)


class TestFetchMetadata(unittest.TestCase):
    """Test fetch_metadata against files written by pyarrow"""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def path(self, name):
        return os.path.join(self.temp_dir, name)

    def write_raw(self, name, data):
        path = self.path(name)
        with open(path, "wb") as f:
            f.write(data)
        return path

    def test_scenario_fields(self):
        path = self.path("scenario.parquet")
        ParquetFileGenerator.create_scenario(path)
        with RecordingSource(path) as source:
            metadata = fetch_metadata(source)
            self.assertEqual(len(source.reads), 2)
            file_length = source.length()

        self.assertEqual(metadata.num_rows, 3)
        self.assertEqual([node.name for node in metadata.fields], ["id", "level", "url"])
        self.assertEqual(metadata.leaf_paths, ["id", "level", "url"])
        self.assertEqual([node.physical_type for node in metadata.fields], ["INT64", "INT32", "BYTE_ARRAY"])
        self.assertEqual(metadata.schema.find("url").logical_type, "STRING")
        self.assertTrue(metadata.created_by.startswith("parquet-cpp-arrow"))

        footer_length = len(metadata.footer_bytes)
        self.assertEqual(source.reads[0], (file_length - 8, 8))
        self.assertEqual(source.reads[1], (file_length - 8 - footer_length, footer_length))

    def test_row_group_ranges_match_pyarrow(self):
        path = self.path("groups.parquet")
        ParquetFileGenerator.create_row_groups(path, sizes=(1000, 1000, 1000))
        with RecordingSource(path) as source:
            metadata = fetch_metadata(source)

        expected = pq.read_metadata(path)
        self.assertEqual(metadata.num_rows, 3000)
        self.assertEqual([group.num_rows for group in metadata.row_groups], [1000, 1000, 1000])
        for group in metadata.row_groups:
            for j, chunk in enumerate(group.columns):
                column = expected.row_group(group.index).column(j)
                start = column.data_page_offset
                if column.has_dictionary_page and 0 < column.dictionary_page_offset < start:
                    start = column.dictionary_page_offset
                self.assertEqual(chunk.path, column.path_in_schema)
                self.assertEqual(chunk.offset, start)
                self.assertEqual(chunk.length, column.total_compressed_size)

    def test_nested_schema(self):
        path = self.path("nested.parquet")
        ParquetFileGenerator.create_nested(path)
        with RecordingSource(path) as source:
            metadata = fetch_metadata(source)

        schema = metadata.schema
        self.assertEqual(
            [node.name for node in metadata.fields],
            ["id", "point", "tags", "attrs", "raw", "price", "day", "seen"],
        )
        self.assertFalse(schema.find("point").is_leaf)
        self.assertEqual(schema.find("point.x").physical_type, "DOUBLE")
        self.assertEqual(schema.find("tags").logical_type, "LIST")
        self.assertEqual(schema.find("attrs").logical_type, "MAP")
        self.assertEqual(schema.find("price").logical_type, "DECIMAL(5,2)")
        self.assertEqual(schema.find("day").logical_type, "DATE")
        self.assertEqual(schema.find("seen").logical_type, "TIMESTAMP(MICROS,true)")
        self.assertIsNone(schema.find("point.z"))
        self.assertEqual([node.name for node in schema.lineage("point.y")], ["point", "y"])
        self.assertIn("point.x", metadata.leaf_paths)
        self.assertEqual(len(metadata.row_groups[0].columns), len(metadata.leaf_paths))

    def test_bad_magic(self):
        path = self.path("corrupt.parquet")
        ParquetFileGenerator.create_corrupt(path)
        with RecordingSource(path) as source:
            with self.assertRaises(MalformedFooterError) as ctx:
                fetch_metadata(source)
        self.assertIn("PAR1", str(ctx.exception))

    def test_encrypted_footer(self):
        path = self.write_raw("encrypted.parquet", b"PAR1" + b"\x00" * 20 + struct.pack("<I", 10) + b"PARE")
        with RecordingSource(path) as source:
            with self.assertRaises(MalformedFooterError) as ctx:
                fetch_metadata(source)
        self.assertIn("encrypted", str(ctx.exception))

    def test_footer_length_exceeds_file(self):
        path = self.write_raw("long.parquet", b"PAR1" + b"\x00" * 20 + struct.pack("<I", 1000) + b"PAR1")
        with RecordingSource(path) as source:
            with self.assertRaises(MalformedFooterError) as ctx:
                fetch_metadata(source)
            self.assertEqual(len(source.reads), 1)
        self.assertIn("exceeds file length", str(ctx.exception))

    def test_tiny_file(self):
        path = self.write_raw("tiny.parquet", b"PAR1PAR1")
        with RecordingSource(path) as source:
            with self.assertRaises(MalformedFooterError):
                fetch_metadata(source)
            self.assertEqual(source.reads, [])

    def test_garbage_footer(self):
        garbage = b"\xff" * 32
        path = self.write_raw(
            "garbage.parquet", b"PAR1" + garbage + struct.pack("<I", len(garbage)) + b"PAR1"
        )
        with RecordingSource(path) as source:
            with self.assertRaises(MalformedFooterError):
                fetch_metadata(source)

    def test_parse_footer_requires_fields(self):
        # An empty struct: just the compact protocol STOP byte.
        with self.assertRaises(MalformedFooterError) as ctx:
            parse_footer(b"\x00")
        self.assertIn("schema", str(ctx.exception))


class TestDictionaryPadding(unittest.TestCase):
    """Test the old parquet-mr dictionary size workaround"""

    def test_old_parquet_mr(self):
        self.assertTrue(_needs_dictionary_padding("parquet-mr version 1.2.8"))
        self.assertTrue(_needs_dictionary_padding("parquet-mr version 1.1.0 (build abc)"))

    def test_fixed_versions_and_other_writers(self):
        self.assertFalse(_needs_dictionary_padding("parquet-mr version 1.2.9"))
        self.assertFalse(_needs_dictionary_padding("parquet-mr version 1.12.3 (build xyz)"))
        self.assertFalse(_needs_dictionary_padding("parquet-cpp-arrow version 15.0.0"))
        self.assertFalse(_needs_dictionary_padding(None))

    def test_padding_size(self):
        self.assertEqual(DICTIONARY_PADDING, 100)


if __name__ == "__main__":
    unittest.main()
