"""
Storage layout diff engine.

Aligns a base layout with a head layout and classifies every discrepancy.

Alignment runs in two passes:

1. variables are matched by name; a matched pair with a different type
   signature is a type change, otherwise a different ``(slot, offset)`` is a
   move;
2. head variables left over are matched against unconsumed base variables at
   the same ``(slot, offset)`` with the same type signature, which is a rename
   (the lowest base index wins a tie).

Whatever is still unmatched is an addition (head side) or a removal (base
side). Records come out in head declaration order, followed by removals in
base declaration order.
"""

from __future__ import annotations

import enum
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Set, Tuple

from .layout import StorageLayout, StorageVariable


class DiffKind(str, enum.Enum):
    VARIABLE_ADDED = "VARIABLE_ADDED"
    VARIABLE_REMOVED = "VARIABLE_REMOVED"
    VARIABLE_RENAMED = "VARIABLE_RENAMED"
    TYPE_CHANGED = "TYPE_CHANGED"
    SLOT_CHANGED = "SLOT_CHANGED"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class DiffRecord:
    """
    One discrepancy between the base and the head layout.

    ``variable_name`` is the head name, except for removals where only the
    base variable exists. ``on_chain_evidence`` is the raw 32-byte word read
    from the deployed contract, set only by the on-chain verifier.
    """

    kind: DiffKind
    variable_name: str
    base_variable: Optional[StorageVariable] = None
    head_variable: Optional[StorageVariable] = None
    on_chain_evidence: Optional[bytes] = None
    is_append: bool = False

    @property
    def previous_name(self) -> Optional[str]:
        return self.base_variable.name if self.base_variable else None

    @property
    def in_head(self) -> bool:
        return self.head_variable is not None


_Key = Tuple[int, int, str]


def _position_key(var: StorageVariable) -> _Key:
    return (var.slot, var.offset, var.type_signature)


def diff_layouts(base: StorageLayout, head: StorageLayout) -> List[DiffRecord]:
    """Return every difference between ``base`` and ``head``, removals included."""
    base_by_name: Dict[str, int] = {var.name: i for i, var in enumerate(base)}
    consumed: Set[int] = set()

    head_records: List[Optional[DiffRecord]] = []
    unmatched: List[int] = []

    # pass 1: identity
    for j, var in enumerate(head):
        i = base_by_name.get(var.name)
        if i is None:
            head_records.append(None)
            unmatched.append(j)
            continue

        consumed.add(i)
        old = base[i]
        if old.type_signature != var.type_signature:
            head_records.append(DiffRecord(DiffKind.TYPE_CHANGED, var.name, old, var))
        elif old.position != var.position:
            head_records.append(DiffRecord(DiffKind.SLOT_CHANGED, var.name, old, var))
        else:
            head_records.append(None)

    # pass 2: position + type, queues are in ascending base index
    candidates: Dict[_Key, Deque[int]] = defaultdict(deque)
    for i, var in enumerate(base):
        if i not in consumed:
            candidates[_position_key(var)].append(i)

    base_end = base.end()
    for j in unmatched:
        var = head[j]
        queue = candidates.get(_position_key(var))
        if queue:
            i = queue.popleft()
            consumed.add(i)
            head_records[j] = DiffRecord(DiffKind.VARIABLE_RENAMED, var.name, base[i], var)
        else:
            head_records[j] = DiffRecord(
                DiffKind.VARIABLE_ADDED, var.name, None, var, is_append=var.start >= base_end
            )

    records = [r for r in head_records if r is not None]
    records.extend(
        DiffRecord(DiffKind.VARIABLE_REMOVED, var.name, var, None)
        for i, var in enumerate(base)
        if i not in consumed
    )
    return records
