"""
Parquet footer fetching and parsing.

File layout:

    PAR1
    <column chunks, row group by row group>
    <FileMetaData (Thrift compact protocol)>
    <footer length (4 bytes, little endian)>
    PAR1

The footer is located with exactly two range reads: the fixed 8-byte trailer,
then the FileMetaData blob it points to. The blob is decoded with the thrift
library's compact protocol, walking field tables shaped like generated
``thrift_spec`` entries and skipping everything this tool does not use.
"""
import logging
import re
import struct
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from thrift.protocol import TCompactProtocol
from thrift.protocol.TProtocol import TType
from thrift.Thrift import TException
from thrift.transport.TTransport import TMemoryBuffer

from .errors import MalformedFooterError

logger = logging.getLogger(__name__)

MAGIC = b"PAR1"
ENCRYPTED_MAGIC = b"PARE"
TRAILER_SIZE = 8
MIN_FILE_SIZE = len(MAGIC) + TRAILER_SIZE

# Files written by parquet-mr before 1.2.9 under-report dictionary page sizes
# (PARQUET-816); decoders read up to this many extra bytes past the chunk.
DICTIONARY_PADDING = 100

PHYSICAL_TYPES = (
    "BOOLEAN", "INT32", "INT64", "INT96", "FLOAT", "DOUBLE", "BYTE_ARRAY", "FIXED_LEN_BYTE_ARRAY",
)
REPETITION_TYPES = ("REQUIRED", "OPTIONAL", "REPEATED")
CONVERTED_TYPES = (
    "UTF8", "MAP", "MAP_KEY_VALUE", "LIST", "ENUM", "DECIMAL", "DATE", "TIME_MILLIS",
    "TIME_MICROS", "TIMESTAMP_MILLIS", "TIMESTAMP_MICROS", "UINT_8", "UINT_16", "UINT_32",
    "UINT_64", "INT_8", "INT_16", "INT_32", "INT_64", "JSON", "BSON", "INTERVAL",
)

# field id -> (thrift type, name, type args); lists take (element type, element args)
TIME_UNIT = {1: (TType.STRUCT, "MILLIS", {}), 2: (TType.STRUCT, "MICROS", {}), 3: (TType.STRUCT, "NANOS", {})}
TIME_TYPE = {1: (TType.BOOL, "isAdjustedToUTC", None), 2: (TType.STRUCT, "unit", TIME_UNIT)}
LOGICAL_TYPE = {
    1: (TType.STRUCT, "STRING", {}),
    2: (TType.STRUCT, "MAP", {}),
    3: (TType.STRUCT, "LIST", {}),
    4: (TType.STRUCT, "ENUM", {}),
    5: (TType.STRUCT, "DECIMAL", {1: (TType.I32, "scale", None), 2: (TType.I32, "precision", None)}),
    6: (TType.STRUCT, "DATE", {}),
    7: (TType.STRUCT, "TIME", TIME_TYPE),
    8: (TType.STRUCT, "TIMESTAMP", TIME_TYPE),
    10: (TType.STRUCT, "INTEGER", {1: (TType.BYTE, "bitWidth", None), 2: (TType.BOOL, "isSigned", None)}),
    11: (TType.STRUCT, "UNKNOWN", {}),
    12: (TType.STRUCT, "JSON", {}),
    13: (TType.STRUCT, "BSON", {}),
    14: (TType.STRUCT, "UUID", {}),
    15: (TType.STRUCT, "FLOAT16", {}),
    16: (TType.STRUCT, "VARIANT", {}),
    17: (TType.STRUCT, "GEOMETRY", {}),
    18: (TType.STRUCT, "GEOGRAPHY", {}),
}
SCHEMA_ELEMENT = {
    1: (TType.I32, "type", None),
    2: (TType.I32, "type_length", None),
    3: (TType.I32, "repetition_type", None),
    4: (TType.STRING, "name", None),
    5: (TType.I32, "num_children", None),
    6: (TType.I32, "converted_type", None),
    7: (TType.I32, "scale", None),
    8: (TType.I32, "precision", None),
    10: (TType.STRUCT, "logicalType", LOGICAL_TYPE),
}
COLUMN_META_DATA = {
    1: (TType.I32, "type", None),
    3: (TType.LIST, "path_in_schema", (TType.STRING, None)),
    4: (TType.I32, "codec", None),
    5: (TType.I64, "num_values", None),
    7: (TType.I64, "total_compressed_size", None),
    9: (TType.I64, "data_page_offset", None),
    11: (TType.I64, "dictionary_page_offset", None),
}
COLUMN_CHUNK = {
    1: (TType.STRING, "file_path", None),
    2: (TType.I64, "file_offset", None),
    3: (TType.STRUCT, "meta_data", COLUMN_META_DATA),
}
ROW_GROUP = {
    1: (TType.LIST, "columns", (TType.STRUCT, COLUMN_CHUNK)),
    2: (TType.I64, "total_byte_size", None),
    3: (TType.I64, "num_rows", None),
}
KEY_VALUE = {1: (TType.STRING, "key", None), 2: (TType.STRING, "value", None)}
FILE_META_DATA = {
    1: (TType.I32, "version", None),
    2: (TType.LIST, "schema", (TType.STRUCT, SCHEMA_ELEMENT)),
    3: (TType.I64, "num_rows", None),
    4: (TType.LIST, "row_groups", (TType.STRUCT, ROW_GROUP)),
    5: (TType.LIST, "key_value_metadata", (TType.STRUCT, KEY_VALUE)),
    6: (TType.STRING, "created_by", None),
}


class FooterProtocol(TCompactProtocol.TCompactProtocol):
    """Compact protocol reader that decodes structs into plain dicts."""

    logger = logging.getLogger(__qualname__)

    primitive_readers = {
        TType.BOOL: "readBool",
        TType.BYTE: "readByte",
        TType.I16: "readI16",
        TType.I32: "readI32",
        TType.I64: "readI64",
        TType.DOUBLE: "readDouble",
        TType.STRING: "readBinary",
    }

    def skip(self, ttype, *args):
        # readString() would insist on UTF-8; statistics hold raw bytes.
        if ttype == TType.STRING:
            self.readBinary()
        else:
            super().skip(ttype, *args)

    def read_struct(self, spec):
        values = {}
        self.readStructBegin()
        while True:
            _, type_id, field_id = self.readFieldBegin()
            if type_id == TType.STOP:
                break
            field_spec = spec.get(field_id)
            if field_spec is None or field_spec[0] != type_id:
                self.logger.debug(f"skipping field {field_id} (type {type_id})")
                self.skip(type_id)
            else:
                _, name, args = field_spec
                values[name] = self._read_value(type_id, args)
            self.readFieldEnd()
        self.readStructEnd()
        return values

    def _read_value(self, type_id, args):
        if type_id == TType.STRUCT:
            return self.read_struct(args)
        if type_id == TType.LIST:
            element_type, element_args = args
            actual_type, size = self.readListBegin()
            if actual_type != element_type:
                raise ValueError(f"list element type {actual_type}, expected {element_type}")
            items = [self._read_value(element_type, element_args) for _ in range(size)]
            self.readListEnd()
            return items
        value = getattr(self, self.primitive_readers[type_id])()
        if type_id == TType.STRING:
            return value.decode("utf-8", errors="replace")
        return value


@dataclass(frozen=True)
class SchemaNode:
    name: str
    path: str
    repetition: Optional[str] = None
    physical_type: Optional[str] = None
    type_length: Optional[int] = None
    converted_type: Optional[str] = None
    logical_type: Optional[str] = None
    children: Tuple["SchemaNode", ...] = ()

    @property
    def is_leaf(self):
        return self.physical_type is not None

    def leaves(self):
        if self.is_leaf:
            yield self
        for child in self.children:
            yield from child.leaves()

    def lineage(self, path):
        """Nodes from the top-level field down to the descendant at ``path``."""
        for child in self.children:
            if child.path == path:
                return [child]
            if path.startswith(child.path + "."):
                below = child.lineage(path)
                if below is not None:
                    return [child] + below
        return None

    def find(self, path):
        """Return the descendant whose dotted path is exactly ``path``."""
        lineage = self.lineage(path)
        return lineage[-1] if lineage else None


@dataclass(frozen=True)
class ColumnChunkRange:
    path: str
    offset: int
    length: int


@dataclass(frozen=True)
class RowGroupDescriptor:
    index: int
    num_rows: int
    columns: Tuple[ColumnChunkRange, ...]


@dataclass(frozen=True)
class FileMetadata:
    num_rows: int
    schema: SchemaNode
    row_groups: Tuple[RowGroupDescriptor, ...]
    footer_bytes: bytes = field(repr=False)
    version: Optional[int] = None
    created_by: Optional[str] = None
    key_value_metadata: Tuple[Tuple[str, Optional[str]], ...] = ()

    @property
    def fields(self):
        return self.schema.children

    @property
    def leaf_paths(self):
        return [leaf.path for leaf in self.schema.leaves()]


def fetch_metadata(source):
    """Read and parse the footer of ``source`` with two range reads."""
    location = str(source.location)
    file_length = source.length()
    if file_length < MIN_FILE_SIZE:
        raise MalformedFooterError(location, f"file is only {file_length} bytes")

    trailer = source.read_range(file_length - TRAILER_SIZE, TRAILER_SIZE)
    footer_length, magic = struct.unpack("<I4s", trailer)
    if magic == ENCRYPTED_MAGIC:
        raise MalformedFooterError(location, "encrypted footers are not supported")
    if magic != MAGIC:
        raise MalformedFooterError(location, f"missing PAR1 footer magic (found {magic!r})")

    footer_start = file_length - TRAILER_SIZE - footer_length
    if footer_start < len(MAGIC):
        raise MalformedFooterError(
            location, f"footer length {footer_length} exceeds file length {file_length}"
        )
    logger.debug("footer of %s: %d bytes at offset %d", location, footer_length, footer_start)
    footer = source.read_range(footer_start, footer_length)
    return parse_footer(footer, location=location, data_end=footer_start)


def parse_footer(footer, location="<footer>", data_end=None):
    """Decode a FileMetaData blob into a FileMetadata."""
    try:
        protocol = FooterProtocol(TMemoryBuffer(footer))
        raw = protocol.read_struct(FILE_META_DATA)
        return _build_metadata(raw, footer, data_end)
    except (TException, AssertionError, UnicodeDecodeError, ValueError, KeyError) as exc:
        raise MalformedFooterError(location, f"cannot decode FileMetaData: {exc}") from exc


def _build_metadata(raw, footer, data_end):
    for required in ("schema", "num_rows", "row_groups"):
        if required not in raw:
            raise ValueError(f"FileMetaData has no {required!r}")

    schema = _build_schema(raw["schema"])
    leaves = list(schema.leaves())
    created_by = raw.get("created_by")
    padding = DICTIONARY_PADDING if _needs_dictionary_padding(created_by) else 0
    file_end = None if data_end is None else data_end + len(footer) + TRAILER_SIZE

    row_groups = []
    for index, row_group in enumerate(raw["row_groups"]):
        chunks = row_group.get("columns", [])
        if len(chunks) != len(leaves):
            raise ValueError(
                f"row group {index} has {len(chunks)} column chunks, schema has {len(leaves)} leaves"
            )
        columns = tuple(
            _chunk_range(chunk, leaf, padding, data_end, file_end)
            for chunk, leaf in zip(chunks, leaves)
        )
        row_groups.append(RowGroupDescriptor(index, row_group["num_rows"], columns))

    total = sum(group.num_rows for group in row_groups)
    if total != raw["num_rows"]:
        raise ValueError(f"row groups hold {total} rows, footer declares {raw['num_rows']}")

    return FileMetadata(
        num_rows=raw["num_rows"],
        schema=schema,
        row_groups=tuple(row_groups),
        footer_bytes=bytes(footer),
        version=raw.get("version"),
        created_by=created_by,
        key_value_metadata=tuple(
            (kv.get("key"), kv.get("value")) for kv in raw.get("key_value_metadata", [])
        ),
    )


def _build_schema(elements):
    if not elements:
        raise ValueError("empty schema")
    position = 0

    def build(parent_path):
        nonlocal position
        if position >= len(elements):
            raise ValueError("schema ends before all children were declared")
        element = elements[position]
        position += 1
        name = element.get("name", "")
        if parent_path is None:
            path = ""
        elif parent_path:
            path = f"{parent_path}.{name}"
        else:
            path = name
        num_children = element.get("num_children")
        children = tuple(build(path) for _ in range(num_children or 0))
        return SchemaNode(
            name=name,
            path=path,
            repetition=_enum_name(REPETITION_TYPES, element.get("repetition_type")),
            physical_type=None if num_children is not None else _enum_name(PHYSICAL_TYPES, element.get("type")),
            type_length=element.get("type_length"),
            converted_type=_enum_name(CONVERTED_TYPES, element.get("converted_type")),
            logical_type=_logical_type_name(element.get("logicalType")),
            children=children,
        )

    root = build(None)
    if position != len(elements):
        raise ValueError(f"{len(elements) - position} schema elements are not reachable from the root")
    return root


def _enum_name(names, value):
    if value is None:
        return None
    if 0 <= value < len(names):
        return names[value]
    return f"UNKNOWN({value})"


def _logical_type_name(logical):
    if not logical:
        return None
    (name, params), = logical.items()
    if name == "DECIMAL":
        return f"DECIMAL({params.get('precision')},{params.get('scale')})"
    if name in ("TIME", "TIMESTAMP"):
        unit = next(iter(params.get("unit") or {"UNKNOWN": {}}))
        utc = str(params.get("isAdjustedToUTC", False)).lower()
        return f"{name}({unit},{utc})"
    if name == "INTEGER":
        signed = str(params.get("isSigned", True)).lower()
        return f"INTEGER({params.get('bitWidth')},{signed})"
    return name


def _chunk_range(chunk, leaf, padding, data_end, file_end):
    if chunk.get("file_path"):
        raise ValueError(f"column {leaf.path!r} lives in external file {chunk['file_path']!r}")
    meta = chunk.get("meta_data")
    if meta is None:
        raise ValueError(f"column {leaf.path!r} has no metadata (encrypted column?)")

    path = ".".join(meta.get("path_in_schema") or []) or leaf.path
    start = meta["data_page_offset"]
    dictionary_offset = meta.get("dictionary_page_offset")
    if dictionary_offset is not None and 0 < dictionary_offset < start:
        start = dictionary_offset
    length = meta["total_compressed_size"]
    if start < 0 or length < 0 or (data_end is not None and start + length > data_end):
        raise ValueError(f"column {path!r} chunk [{start}, {start + length}) lies outside the data area")
    if padding and file_end is not None:
        length = min(length + padding, file_end - start)
    return ColumnChunkRange(path, start, length)


_PARQUET_MR_RE = re.compile(r"parquet-mr version (\d+)\.(\d+)\.(\d+)")


def _needs_dictionary_padding(created_by):
    match = _PARQUET_MR_RE.match(created_by or "")
    return match is not None and tuple(int(part) for part in match.groups()) < (1, 2, 9)
