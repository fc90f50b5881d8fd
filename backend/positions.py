# positions.py — Fractional ordering keys for Kanban columns
"""
Each (workspace, status) column is ordered by a float key. Dropping a card
between two neighbours takes the midpoint of their keys; dropping at either
edge steps one unit past the single neighbour. When the midpoint can no longer
be represented (it equals a neighbour) or the column already holds duplicate
keys, the whole column is renumbered 0, step, 2*step, ...
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config import POSITION_REINDEX_STEP

FIRST_KEY = 0.0
EDGE_GAP = 1.0


@dataclass
class Placement:
    """Outcome of placing one task in a column."""
    key: float
    updates: Dict[str, float] = field(default_factory=dict)
    reindexed: bool = False


def key_between(before: Optional[float], after: Optional[float]) -> Optional[float]:
    """Return a key strictly between the neighbours, or None if none exists."""
    if before is None and after is None:
        return FIRST_KEY
    if before is None:
        return after - EDGE_GAP
    if after is None:
        return before + EDGE_GAP
    if not before < after:
        return None
    mid = (before + after) / 2
    if mid <= before or mid >= after:
        return None
    return mid


def has_collisions(keys: Iterable[float]) -> bool:
    ordered = sorted(keys)
    return any(a == b for a, b in zip(ordered, ordered[1:]))


def reindex(ordered_ids: Sequence[str], step: float = POSITION_REINDEX_STEP) -> Dict[str, float]:
    return {task_id: i * step for i, task_id in enumerate(ordered_ids)}


def ordered(column: Iterable[Tuple[str, float]]) -> List[Tuple[str, float]]:
    """Sort (task_id, key) pairs by key; ties fall back to id so replays agree."""
    return sorted(column, key=lambda item: (item[1], item[0]))


def place(
    column: Iterable[Tuple[str, float]],
    task_id: str,
    index: Optional[int] = None,
    step: float = POSITION_REINDEX_STEP,
) -> Placement:
    """Compute the key for ``task_id`` dropped at ``index`` of ``column``.

    ``column`` is the current content of the destination column; the moving
    task is ignored if present. ``index`` None (or past the end) appends.
    """
    others = [item for item in ordered(column) if item[0] != task_id]
    if index is None or index > len(others):
        index = len(others)
    index = max(index, 0)

    keys = [key for _, key in others]
    if not has_collisions(keys):
        before = keys[index - 1] if index > 0 else None
        after = keys[index] if index < len(keys) else None
        key = key_between(before, after)
        if key is not None:
            return Placement(key=key, updates={task_id: key})

    ids = [tid for tid, _ in others]
    ids.insert(index, task_id)
    updates = reindex(ids, step)
    return Placement(key=updates[task_id], updates=updates, reindexed=True)


def repair(column: Iterable[Tuple[str, float]], step: float = POSITION_REINDEX_STEP) -> Dict[str, float]:
    """Renumber a column that holds duplicate keys; empty dict if already sound."""
    items = ordered(column)
    if not has_collisions(key for _, key in items):
        return {}
    return reindex([tid for tid, _ in items], step)
