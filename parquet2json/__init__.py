"""Stream Parquet rows from local files, HTTP(S) URLs and S3 objects as JSON lines."""
from .errors import (
    DecodeError,
    MalformedFooterError,
    Parquet2JsonError,
    SourceError,
    TransientIOError,
    UnknownColumnError,
)
from .footer import FileMetadata, fetch_metadata
from .location import parse_location
from .projection import parse_columns, resolve_columns
from .reader import StreamingRowReader
from .sources import open_source
from .window import plan_window

__version__ = "0.1.0"
