"""Severity and display title for each kind of layout difference."""

from __future__ import annotations

import enum
from typing import Dict

from .diff import DiffKind


class Severity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"

    def __str__(self) -> str:
        return self.value


DIFF_LEVELS: Dict[DiffKind, Severity] = {
    DiffKind.VARIABLE_ADDED: Severity.WARNING,
    DiffKind.VARIABLE_REMOVED: Severity.ERROR,
    DiffKind.VARIABLE_RENAMED: Severity.WARNING,
    DiffKind.TYPE_CHANGED: Severity.ERROR,
    DiffKind.SLOT_CHANGED: Severity.ERROR,
}

DIFF_TITLES: Dict[DiffKind, str] = {
    DiffKind.VARIABLE_ADDED: "Storage variable added",
    DiffKind.VARIABLE_REMOVED: "Storage variable removed",
    DiffKind.VARIABLE_RENAMED: "Storage variable renamed",
    DiffKind.TYPE_CHANGED: "Storage variable type changed",
    DiffKind.SLOT_CHANGED: "Storage variable moved",
}


def severity_of(kind: DiffKind) -> Severity:
    """Unknown kinds are treated as errors."""
    return DIFF_LEVELS.get(kind, Severity.ERROR)


def title_of(kind: DiffKind) -> str:
    return DIFF_TITLES.get(kind, "Storage layout changed")
