"""Turn diff records into located, human-readable diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .diff import DiffKind, DiffRecord
from .errors import SourceLocationNotFoundError
from .layout import StorageVariable
from .policy import Severity, severity_of, title_of
from .source import SourceDefinition, SourceSpan


@dataclass(frozen=True)
class FormattedDiff:
    kind: DiffKind
    message: str
    loc: SourceSpan
    title: str
    severity: Severity
    diff: Optional[DiffRecord] = None

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR


def _where(var: StorageVariable) -> str:
    return f"slot {var.slot}, offset {var.offset}"


def _evidence(word: bytes) -> str:
    value = "0x" + word.hex()
    if any(word):
        return f" The deployed contract holds {value} at this slot: live state would be lost or misread."
    return f" The deployed contract holds zero at this slot ({value})."


def format_message(diff: DiffRecord) -> str:
    base, head = diff.base_variable, diff.head_variable

    if diff.kind is DiffKind.TYPE_CHANGED:
        return (
            f'variable "{diff.variable_name}" was of type "{base.display_type}" ({base.byte_size} bytes) '
            f'but is now of type "{head.display_type}" ({head.byte_size} bytes), '
            f"so values stored at {_where(base)} would be decoded differently"
        )
    if diff.kind is DiffKind.SLOT_CHANGED:
        return (
            f'variable "{diff.variable_name}" of type "{head.display_type}" moved from '
            f"{_where(base)} to {_where(head)}; deployed state stays at the old location"
        )
    if diff.kind is DiffKind.VARIABLE_RENAMED:
        return (
            f'variable "{base.name}" was renamed to "{head.name}" '
            f'({_where(head)}, type "{head.display_type}"); the storage encoding is unchanged'
        )
    if diff.kind is DiffKind.VARIABLE_ADDED:
        placement = "appended" if diff.is_append else "inserted"
        message = f'variable "{head.name}" of type "{head.display_type}" was {placement} at {_where(head)}'
        if not diff.is_append:
            message += "; make sure this storage was never written by a previous version"
        return message
    if diff.kind is DiffKind.VARIABLE_REMOVED:
        message = (
            f'variable "{base.name}" of type "{base.display_type}" was removed from {_where(base)}; '
            "a later variable could reuse this storage and read stale data."
        )
        if diff.on_chain_evidence is not None:
            message += _evidence(diff.on_chain_evidence)
        return message
    return f'storage of variable "{diff.variable_name}" changed'


def resolve_diff(
    source: SourceDefinition, diff: DiffRecord, contract_name: Optional[str] = None
) -> FormattedDiff:
    """
    Anchor ``diff`` to the head source.

    Variables present in head are looked up by name, in their declaring
    contract when the layout qualified a repeated label. A pure removal points at
    the whole contract since the variable no longer exists in head.
    Raises :class:`SourceLocationNotFoundError` when the source does not
    declare a variable that the head layout contains.
    """
    contract = source.contract(contract_name)
    if contract is None:
        raise SourceLocationNotFoundError(contract_name or "<contract>", source.path)

    if diff.in_head:
        var = diff.head_variable
        loc = source.find_variable(var.declared_name, var.qualifier or contract.name)
        if loc is None:
            raise SourceLocationNotFoundError(diff.variable_name, source.path)
    else:
        loc = contract.loc

    return FormattedDiff(
        kind=diff.kind,
        message=format_message(diff),
        loc=loc,
        title=title_of(diff.kind),
        severity=severity_of(diff.kind),
        diff=diff,
    )
