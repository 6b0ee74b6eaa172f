"""Resolve a ``--columns`` selection against the file schema, before any row I/O."""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from .errors import UnknownColumnError

logger = logging.getLogger(__name__)

TOLERATE_MISSING_PREFIX = "?"
REPEATED_ANNOTATIONS = ("LIST", "MAP", "MAP_KEY_VALUE")


@dataclass(frozen=True)
class SelectedColumn:
    path: str
    tolerate_missing: bool = False


@dataclass(frozen=True)
class ResolvedColumn:
    path: str
    present: bool


@dataclass(frozen=True)
class ProjectionPlan:
    columns: Tuple[ResolvedColumn, ...]
    leaf_paths: Tuple[str, ...]

    @property
    def read_paths(self):
        """Paths handed to the decoder; absent tolerated columns are never read."""
        return tuple(column.path for column in self.columns if column.present)


def parse_columns(value: Optional[str]) -> Tuple[SelectedColumn, ...]:
    """Parse ``a,?b,c.d``; a leading ``?`` marks a column that may be absent."""
    if not value:
        return ()
    selection = []
    for entry in value.split(","):
        if not entry:
            continue
        tolerate_missing = entry.startswith(TOLERATE_MISSING_PREFIX)
        path = entry[len(TOLERATE_MISSING_PREFIX):] if tolerate_missing else entry
        if not path:
            raise ValueError(f"empty column name in {value!r}")
        selection.append(SelectedColumn(path, tolerate_missing))
    return tuple(selection)


def resolve_columns(schema, selection) -> ProjectionPlan:
    """Map the selection onto schema nodes, preserving the requested order.

    Matching is an exact, case-sensitive comparison of dotted paths. Paths
    may descend into structs but not into lists or maps. An empty selection
    means every top-level field in schema order.
    """
    if not selection:
        selection = tuple(SelectedColumn(node.path) for node in schema.children)

    columns = []
    leaf_paths = []
    seen = set()
    for selected in selection:
        if selected.path in seen:
            logger.debug("ignoring repeated column %r", selected.path)
            continue
        seen.add(selected.path)

        node = _addressable(schema, selected.path)
        if node is None:
            if not selected.tolerate_missing:
                raise UnknownColumnError(selected.path)
            logger.debug("column %r is absent; it will be emitted as null", selected.path)
            columns.append(ResolvedColumn(selected.path, present=False))
            continue

        columns.append(ResolvedColumn(selected.path, present=True))
        for leaf in node.leaves():
            if leaf.path not in leaf_paths:
                leaf_paths.append(leaf.path)

    logger.debug("projection: %s reading leaves %s", [c.path for c in columns], leaf_paths)
    return ProjectionPlan(tuple(columns), tuple(leaf_paths))


def _addressable(schema, path):
    """Return the node at ``path`` unless reaching it means stepping inside a list or map."""
    lineage = schema.lineage(path)
    if not lineage:
        return None
    for ancestor in lineage[:-1]:
        if (
            ancestor.repetition == "REPEATED"
            or ancestor.logical_type in REPEATED_ANNOTATIONS
            or ancestor.converted_type in REPEATED_ANNOTATIONS
        ):
            logger.debug("column %r lies inside repeated field %r", path, ancestor.path)
            return None
    return lineage[-1]
