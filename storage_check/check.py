"""Run the diff engine with the caller's options and decide pass or fail."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Union

from .diff import DiffKind, DiffRecord, diff_layouts
from .layout import StorageLayout
from .onchain import DEFAULT_TIMEOUT, StorageReader, annotate_removals
from .policy import Severity, severity_of
from .resolve import FormattedDiff

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckOptions:
    check_removals: bool = False
    address: Optional[str] = None
    reader: Optional[StorageReader] = None
    timeout: float = DEFAULT_TIMEOUT

    @property
    def verify_on_chain(self) -> bool:
        """Both the address and the reader are needed to read deployed storage."""
        return bool(self.address) and self.reader is not None


def check_layouts(
    base: StorageLayout, head: StorageLayout, options: Optional[CheckOptions] = None
) -> List[DiffRecord]:
    """
    Diff ``base`` against ``head``.

    Removals are annotated with on-chain evidence when enabled, and are left
    out of the result unless ``check_removals`` is set.
    """
    options = options or CheckOptions()
    diffs = diff_layouts(base, head)
    logger.debug("%d raw difference(s) between base and head", len(diffs))

    if options.verify_on_chain:
        diffs = annotate_removals(diffs, options.address, options.reader, timeout=options.timeout)

    if not options.check_removals:
        removed = [d for d in diffs if d.kind is DiffKind.VARIABLE_REMOVED]
        if removed:
            logger.info(
                "ignoring %d removed variable(s): %s",
                len(removed),
                ", ".join(d.variable_name for d in removed),
            )
        diffs = [d for d in diffs if d.kind is not DiffKind.VARIABLE_REMOVED]
    return diffs


def is_unsafe(diffs: Iterable[Union[DiffRecord, FormattedDiff]], check_removals: bool) -> bool:
    for diff in diffs:
        if severity_of(diff.kind) is Severity.ERROR:
            return True
        if check_removals and diff.kind is DiffKind.VARIABLE_REMOVED:
            return True
    return False
