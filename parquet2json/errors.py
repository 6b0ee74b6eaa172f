"""
Error taxonomy for parquet2json.

Every fatal condition maps to one exception class, and every class carries a
stable process exit code:

    0  success (also: empty row window, downstream closed the pipe)
    2  command line usage error (reported by argparse)
    3  SourceError           location unreachable, malformed URL, auth failure
    4  MalformedFooterError  input is not a readable Parquet file
    5  UnknownColumnError    requested column absent from the schema
    6  TransientIOError      timeout or transient network failure
    7  DecodeError           a row group failed to decode

Nothing is retried: the first error terminates the run.
"""


class Parquet2JsonError(Exception):
    exit_code = 1


class SourceError(Parquet2JsonError):
    exit_code = 3

    def __init__(self, location, reason):
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason


class MalformedFooterError(Parquet2JsonError):
    exit_code = 4

    def __init__(self, location, reason):
        super().__init__(f"{location}: not a valid Parquet file: {reason}")
        self.location = location
        self.reason = reason


class UnknownColumnError(Parquet2JsonError):
    exit_code = 5

    def __init__(self, column):
        super().__init__(f"unknown column: {column!r}")
        self.column = column


class TransientIOError(Parquet2JsonError):
    exit_code = 6

    def __init__(self, location, backend, reason, offset=None, length=None):
        if offset is None:
            what = f"{backend} length probe of {location}"
        else:
            what = f"{backend} read of bytes [{offset}, {offset + length}) from {location}"
        super().__init__(f"{what} failed: {reason}")
        self.location = location
        self.offset = offset
        self.length = length
        self.backend = backend


class DecodeError(Parquet2JsonError):
    exit_code = 7

    def __init__(self, row_group, column, reason):
        super().__init__(
            f"failed to decode row group {row_group}, column {column!r}: {reason}"
        )
        self.row_group = row_group
        self.column = column
