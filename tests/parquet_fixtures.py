"""
Helpers shared by the test suites: Parquet fixture files and fake range
backends for HTTP and S3.
"""

import datetime
import io
import re
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pyarrow as pa
import pyarrow.parquet as pq

from parquet2json.location import LocalPath
from parquet2json.sources import LocalFileSource


class ParquetFileGenerator:
    """Writes the Parquet files used across the test suites"""

    @staticmethod
    def create_scenario(file_path):
        """{id: int64, level: int32, url: ?string} with rows (1,3,"a"), (2,1,null), (3,3,"b")"""
        table = pa.table(
            {
                "id": pa.array([1, 2, 3], pa.int64()),
                "level": pa.array([3, 1, 3], pa.int32()),
                "url": pa.array(["a", None, "b"], pa.string()),
            }
        )
        pq.write_table(table, file_path)
        return table

    @staticmethod
    def create_row_groups(file_path, sizes=(1000, 1000, 1000)):
        """One row group per entry in ``sizes``; ``id`` counts rows from 0"""
        schema = pa.schema([("id", pa.int64()), ("name", pa.string())])
        first = 0
        with pq.ParquetWriter(file_path, schema) as writer:
            for size in sizes:
                ids = list(range(first, first + size))
                writer.write_table(
                    pa.table(
                        {"id": pa.array(ids, pa.int64()), "name": [f"name_{i}" for i in ids]},
                        schema=schema,
                    )
                )
                first += size

    @staticmethod
    def create_nested(file_path):
        """Struct, list, map, binary, decimal and date columns with nulls"""
        table = pa.table(
            {
                "id": pa.array([1, 2], pa.int64()),
                "point": pa.array(
                    [{"x": 1.5, "y": None}, None],
                    pa.struct([("x", pa.float64()), ("y", pa.float64())]),
                ),
                "tags": pa.array([["a", "b"], []], pa.list_(pa.string())),
                "attrs": pa.array([[("k", 1)], None], pa.map_(pa.string(), pa.int32())),
                "raw": pa.array([b"\x00\xff", b"ok"], pa.binary()),
                "price": pa.array([Decimal("1.25"), None], pa.decimal128(5, 2)),
                "day": pa.array([datetime.date(2024, 1, 2), None], pa.date32()),
                "seen": pa.array(
                    [datetime.datetime(2024, 1, 2, 3, 4, 5), None],
                    pa.timestamp("us", tz="UTC"),
                ),
            }
        )
        pq.write_table(table, file_path)
        return table

    @staticmethod
    def create_wide(file_path, rows=100):
        """A pandas-built file with a few columns of each basic type"""
        import pandas as pd

        df = pd.DataFrame(
            {
                "id": list(range(rows)),
                "name": [f"name_{i}" for i in range(rows)],
                "value": [float(i) * 1.1 for i in range(rows)],
                "flag": [i % 2 == 0 for i in range(rows)],
            }
        )
        pq.write_table(pa.Table.from_pandas(df, preserve_index=False), file_path, row_group_size=25)

    @staticmethod
    def create_corrupt(file_path):
        """Wrong footer magic"""
        with open(file_path, "wb") as f:
            f.write(b"PAR1")
            f.write(b"\x00" * 50)
            f.write((50).to_bytes(4, byteorder="little"))
            f.write(b"XXXX")


class RecordingSource(LocalFileSource):
    """LocalFileSource that remembers every backend read"""

    def __init__(self, path):
        super().__init__(LocalPath(str(path)))
        self.reads = []

    def _fetch(self, offset, length):
        self.reads.append((offset, length))
        return super()._fetch(offset, length)


_RANGE_RE = re.compile(r"bytes=(\d*)-(\d*)")


def resolve_range(header, size):
    """Inclusive ``(start, end)`` for a Range header value"""
    first, last = _RANGE_RE.fullmatch(header).groups()
    if first == "":
        return max(size - int(last), 0), size - 1
    return int(first), min(int(last), size - 1)


def range_transport(data, requests=None):
    """httpx transport that serves byte ranges of ``data`` like a static file server"""

    def handler(request):
        header = request.headers["Range"]
        if requests is not None:
            requests.append(header)
        start, end = resolve_range(header, len(data))
        return httpx.Response(
            206,
            headers={"Content-Range": f"bytes {start}-{end}/{len(data)}"},
            content=data[start:end + 1],
        )

    return httpx.MockTransport(handler)


def fake_s3_client(data, requests=None):
    """MagicMock boto3 client whose get_object serves ranges of ``data``"""

    def get_object(Bucket, Key, Range):
        if requests is not None:
            requests.append((Bucket, Key, Range))
        start, end = resolve_range(Range, len(data))
        return {
            "Body": io.BytesIO(data[start:end + 1]),
            "ContentRange": f"bytes {start}-{end}/{len(data)}",
            "ContentLength": end + 1 - start,
        }

    client = MagicMock()
    client.get_object.side_effect = get_object
    return client
