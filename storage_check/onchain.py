"""
On-chain evidence for removed storage variables.

When a deployed address and an RPC endpoint are known, the word currently
stored at a removed variable's slot is read and attached to the diff. The
evidence never changes a diff's severity, and a failed or slow read only means
the diff is reported without it.
"""

from __future__ import annotations

import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Protocol, Sequence

from web3 import Web3

from .diff import DiffKind, DiffRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class StorageReader(Protocol):
    def read_word(self, address: str, slot: int) -> bytes:
        ...


class Web3StorageReader:
    """Reads storage words through ``eth_getStorageAt`` on an HTTP endpoint."""

    def __init__(self, rpc_url: str, timeout: float = DEFAULT_TIMEOUT, block: str = "latest"):
        self.rpc_url = rpc_url
        self.block = block
        self.w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))

    def read_word(self, address: str, slot: int) -> bytes:
        value = self.w3.eth.get_storage_at(Web3.to_checksum_address(address), slot, self.block)
        return bytes(value).rjust(32, b"\x00")

    def __repr__(self) -> str:
        return f"Web3StorageReader({self.rpc_url!r})"


def annotate_removal(diff: DiffRecord, address: str, reader: StorageReader) -> DiffRecord:
    """Return ``diff`` with the deployed word at its slot attached, or unchanged on failure."""
    if diff.kind is not DiffKind.VARIABLE_REMOVED or diff.base_variable is None:
        return diff
    slot = diff.base_variable.slot
    try:
        word = reader.read_word(address, slot)
    except Exception as e:
        logger.warning("could not read slot %d of %s: %s", slot, address, e)
        return diff
    logger.debug("slot %d of %s holds 0x%s", slot, address, word.hex())
    return dataclasses.replace(diff, on_chain_evidence=word)


def annotate_removals(
    diffs: Sequence[DiffRecord],
    address: str,
    reader: StorageReader,
    timeout: float = DEFAULT_TIMEOUT,
    max_workers: int = 8,
) -> List[DiffRecord]:
    """
    Annotate every removal concurrently, keeping the order of ``diffs``.

    Reads still pending after ``timeout`` seconds are abandoned and their
    diffs are returned without evidence.
    """
    removals = [i for i, d in enumerate(diffs) if d.kind is DiffKind.VARIABLE_REMOVED]
    if not removals:
        return list(diffs)

    result = list(diffs)
    executor = ThreadPoolExecutor(max_workers=min(max_workers, len(removals)))
    try:
        futures = {executor.submit(annotate_removal, diffs[i], address, reader): i for i in removals}
        done, pending = wait(futures, timeout=timeout)
        for future in done:
            result[futures[future]] = future.result()
        if pending:
            logger.warning(
                "%d on-chain read(s) of %s did not finish within %.1fs", len(pending), address, timeout
            )
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
    return result

