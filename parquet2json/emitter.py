"""Text output: newline-delimited JSON rows and the ``schema`` listing."""
import base64
import datetime
import decimal
import json
import math


def to_json_value(value):
    """Convert a decoded Python value to something ``json.dumps`` accepts.

    Maps arrive from pyarrow as lists of ``(key, value)`` tuples; they become
    objects when every key is a string. Non-finite floats become null.
    Binary values are always base64; STRING columns arrive as str.
    """
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {key: to_json_value(item) for key, item in value.items()}
    if isinstance(value, list):
        if value and all(isinstance(item, tuple) and len(item) == 2 for item in value):
            if all(isinstance(key, str) for key, _ in value):
                return {key: to_json_value(item) for key, item in value}
            return [[to_json_value(key), to_json_value(item)] for key, item in value]
        return [to_json_value(item) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return value.total_seconds()
    if isinstance(value, decimal.Decimal):
        return str(value)
    return str(value)


class JsonLineEmitter:
    def __init__(self, stream, include_nulls=False):
        self.stream = stream
        self.include_nulls = include_nulls
        self.lines = 0

    def emit(self, row):
        record = {}
        for name, value in row:
            value = to_json_value(value)
            if value is None and not self.include_nulls:
                continue
            record[name] = value
        self.stream.write(json.dumps(record, ensure_ascii=False, separators=(",", ":")))
        self.stream.write("\n")
        self.lines += 1


# Message notation spells BYTE_ARRAY as "binary".
SCHEMA_TYPE_NAMES = {"BYTE_ARRAY": "binary"}


def render_schema(metadata):
    """Render the schema tree in the Parquet message notation."""
    lines = [f"message {metadata.schema.name or 'schema'} {{"]
    for node in metadata.schema.children:
        _render_node(node, 1, lines)
    lines.append("}")
    return "\n".join(lines)


def _render_node(node, depth, lines):
    indent = "  " * depth
    repetition = (node.repetition or "required").lower()
    annotation = node.logical_type or node.converted_type
    suffix = f" ({annotation})" if annotation else ""
    if node.is_leaf:
        physical = SCHEMA_TYPE_NAMES.get(node.physical_type, node.physical_type.lower())
        if node.physical_type == "FIXED_LEN_BYTE_ARRAY" and node.type_length is not None:
            physical = f"{physical}({node.type_length})"
        lines.append(f"{indent}{repetition} {physical} {node.name}{suffix};")
        return
    lines.append(f"{indent}{repetition} group {node.name}{suffix} {{")
    for child in node.children:
        _render_node(child, depth + 1, lines)
    lines.append(f"{indent}}}")
