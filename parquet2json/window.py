"""Turn ``--offset``/``--limit`` into a row window and the row groups it touches."""
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RowWindow:
    start: int
    end: int

    @property
    def is_empty(self):
        return self.end <= self.start

    def __len__(self):
        return max(self.end - self.start, 0)


@dataclass(frozen=True)
class RowGroupSlice:
    """Rows ``[skip, skip + take)`` of row group ``index`` fall inside the window."""

    index: int
    skip: int
    take: int


@dataclass(frozen=True)
class WindowPlan:
    window: RowWindow
    row_groups: Tuple[RowGroupSlice, ...]

    @property
    def is_empty(self):
        return self.window.is_empty


def resolve_window(total_rows: int, offset: int = 0, limit: Optional[int] = None) -> RowWindow:
    """Clamp a raw offset/limit to ``[0, total_rows]``.

    A negative offset ``-k`` starts ``k`` rows before the end (never before
    row 0). A missing or negative limit means "through the end of the file";
    a zero limit selects nothing.
    """
    if offset < 0:
        start = max(total_rows + offset, 0)
    else:
        start = min(offset, total_rows)
    if limit is None or limit < 0:
        end = total_rows
    else:
        end = min(start + limit, total_rows)
    return RowWindow(start, end)


def plan_window(row_groups, offset: int = 0, limit: Optional[int] = None) -> WindowPlan:
    total_rows = sum(group.num_rows for group in row_groups)
    window = resolve_window(total_rows, offset, limit)
    if window.is_empty:
        logger.debug("row window is empty (offset=%s, limit=%s, rows=%d)", offset, limit, total_rows)
        return WindowPlan(window, ())

    slices = []
    group_start = 0
    for group in row_groups:
        group_end = group_start + group.num_rows
        if group.num_rows and group_end > window.start and group_start < window.end:
            skip = max(window.start - group_start, 0)
            take = min(window.end, group_end) - group_start - skip
            slices.append(RowGroupSlice(group.index, skip, take))
        if group_end >= window.end:
            break
        group_start = group_end

    logger.debug(
        "rows [%d, %d) span row groups %s", window.start, window.end, [s.index for s in slices]
    )
    return WindowPlan(window, tuple(slices))
