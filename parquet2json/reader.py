"""
Streaming row reader.

For every row group in the window plan, in ascending order:

1. fetch the byte range of each needed column chunk (one range read each,
   concurrently on remote sources),
2. expose just those bytes to pyarrow through a sparse file object,
3. decode the selected columns of that row group,
4. slice the decoded rows down to the window and yield them.

pyarrow has no cheaper way to skip rows inside a row group than decoding it,
so slicing happens on the decoded Arrow table, which is zero-copy.
"""
import io
import logging
import struct
from concurrent.futures import ThreadPoolExecutor

import pyarrow as pa
import pyarrow.parquet as pq

from .errors import DecodeError, MalformedFooterError
from .footer import MAGIC

logger = logging.getLogger(__name__)


class FetchedRangeFile(io.RawIOBase):
    """A read-only, seekable view of a file that holds only fetched ranges.

    Reads falling outside the ranges currently held raise OSError, so the
    decoder can never trigger I/O of its own.
    """

    def __init__(self, size):
        super().__init__()
        self._size = size
        self._position = 0
        self._ranges = []

    def hold(self, ranges):
        """Replace the held ranges with ``[(offset, data), ...]``."""
        self._ranges = sorted(ranges, key=lambda item: item[0])

    def readable(self):
        return True

    def seekable(self):
        return True

    def tell(self):
        return self._position

    def seek(self, offset, whence=io.SEEK_SET):
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = self._size + offset
        else:
            raise ValueError(f"invalid whence: {whence}")
        if position < 0:
            raise OSError(f"negative seek position {position}")
        self._position = position
        return position

    def readinto(self, buffer):
        length = min(len(buffer), self._size - self._position)
        if length <= 0:
            return 0
        buffer[:length] = self._slice(self._position, length)
        self._position += length
        return length

    def _slice(self, offset, length):
        for start, data in self._ranges:
            if start <= offset and offset + length <= start + len(data):
                return data[offset - start:offset - start + length]
        raise OSError(f"bytes [{offset}, {offset + length}) were not fetched")


def open_decoder_metadata(metadata, location="<footer>"):
    """Hand the already-fetched footer to pyarrow without touching the source."""
    footer = metadata.footer_bytes
    blob = footer + struct.pack("<I", len(footer)) + MAGIC
    try:
        return pq.read_metadata(pa.BufferReader(blob))
    except (pa.ArrowException, OSError, ValueError) as exc:
        raise MalformedFooterError(location, f"decoder rejected the footer: {exc}") from exc


class StreamingRowReader:
    """Yield DecodedRow tuples of ``(name, value)`` pairs for a planned window.

    ``None`` is the explicit null. Whether nulls are printed is up to the
    emitter. ``rows()`` may be iterated once.
    """

    def __init__(
        self,
        source,
        metadata,
        window_plan,
        projection,
        max_concurrent_fetches=1,
        cancel_event=None,
    ):
        self.source = source
        self.metadata = metadata
        self.window_plan = window_plan
        self.projection = projection
        self.max_concurrent_fetches = max_concurrent_fetches
        self.cancel_event = cancel_event
        self.rows_emitted = 0
        self._started = False
        self._file = None
        self._parquet = None
        self._name_chains = {
            path: [node.name for node in metadata.schema.lineage(path)]
            for path in projection.read_paths
        }
        if not window_plan.is_empty and projection.read_paths:
            decoder_metadata = open_decoder_metadata(metadata, str(source.location))
            self._file = FetchedRangeFile(source.length())
            self._parquet = pq.ParquetFile(
                pa.PythonFile(self._file, mode="r"),
                metadata=decoder_metadata,
                pre_buffer=False,
            )

    def rows(self):
        if self._started:
            raise RuntimeError("rows() can only be iterated once")
        self._started = True

        executor = None
        if self.source.is_remote and self.max_concurrent_fetches > 1 and len(self.projection.leaf_paths) > 1:
            executor = ThreadPoolExecutor(
                max_workers=min(self.max_concurrent_fetches, len(self.projection.leaf_paths)),
                thread_name_prefix="fetch",
            )
        try:
            for group_slice in self.window_plan.row_groups:
                if self.cancel_event is not None and self.cancel_event.is_set():
                    logger.info("cancelled before row group %d", group_slice.index)
                    return
                columns = self._read_row_group(group_slice, executor)
                rows = zip(*columns) if columns else [()] * group_slice.take
                for values in rows:
                    yield self._row(values)
                    self.rows_emitted += 1
        finally:
            if executor is not None:
                executor.shutdown(wait=True, cancel_futures=True)
            if self._file is not None:
                self._file.hold([])

    def _row(self, values):
        present = iter(values)
        return tuple(
            (column.path, next(present) if column.present else None)
            for column in self.projection.columns
        )

    def _read_row_group(self, group_slice, executor):
        """Return one value list per read path for the sliced rows."""
        if not self.projection.read_paths:
            return []
        group = self.metadata.row_groups[group_slice.index]
        self._file.hold(self._fetch_chunks(group, executor))

        columns = []
        for path in self.projection.read_paths:
            logger.debug("decoding row group %d column %r", group.index, path)
            try:
                table = self._parquet.read_row_group(group.index, columns=[path], use_threads=False)
                values = table.slice(group_slice.skip, group_slice.take).column(0).to_pylist()
            except (pa.ArrowException, OSError, ValueError) as exc:
                raise DecodeError(group.index, path, str(exc)) from exc
            columns.append([_descend(value, self._name_chains[path]) for value in values])
        return columns

    def _fetch_chunks(self, group, executor):
        by_path = {chunk.path: chunk for chunk in group.columns}
        chunks = []
        for path in self.projection.leaf_paths:
            chunk = by_path[path]
            if all((chunk.offset, chunk.length) != (c.offset, c.length) for c in chunks):
                chunks.append(chunk)

        def fetch(chunk):
            return chunk.offset, self.source.read_range(chunk.offset, chunk.length)

        if executor is None or len(chunks) < 2:
            return [fetch(chunk) for chunk in chunks]
        return list(executor.map(fetch, chunks))


def _descend(value, names):
    for name in names[1:]:
        if not isinstance(value, dict):
            return None
        value = value.get(name)
    return value
