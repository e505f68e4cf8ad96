"""Thin wrappers around the Foundry ``forge`` binary."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Set, Union

from .errors import ToolError

logger = logging.getLogger(__name__)

# List of path prefixes we ignore when gathering contracts
IGNORE_PREFIXES = ("lib/", "test/", "script/")


def run(cmd: List[str], cwd: Optional[Union[str, Path]] = None) -> str:
    """Run `cmd`, return stdout, raise :class:`ToolError` on non-zero exit."""
    logger.debug("running %s (cwd=%s)", " ".join(cmd), cwd or ".")
    try:
        res = subprocess.run(cmd, capture_output=True, text=True, cwd=cwd)
    except FileNotFoundError as e:
        raise ToolError(cmd, 127, str(e)) from e
    if res.returncode != 0:
        raise ToolError(cmd, res.returncode, res.stderr.strip())
    return res.stdout.strip()


def create_layout(contract: str, working_directory: Union[str, Path] = ".") -> str:
    """Return the raw JSON storage layout of ``contract`` (a path or ``path:Name``)."""
    return run(["forge", "inspect", contract, "storageLayout", "--json"], cwd=working_directory or None)


def build(cwd: Optional[Union[str, Path]] = None) -> None:
    run(["forge", "clean"], cwd=cwd)
    run(["forge", "build", "--skip", "test", "--skip", "script"], cwd=cwd)


def artifact_contract_ids(out_dir: Union[str, Path] = "out") -> List[str]:
    """
    Scan `out/` for Foundry artifacts and return identifiers accepted by
    `forge inspect`, in the canonical `<relative-path>.sol:<Contract>` form.

    Works even when artifacts lack `sourcePath` / `sourceName` by reading the
    embedded compiler metadata, then by falling back to the artifact path.

    Returns
    -------
    List[str]
        Ordered list without duplicates. Example:
        ["src/Vault.sol:Vault", "src/Vault.sol:VaultStorage"]
    """
    out = Path(out_dir)
    seen: Set[str] = set()
    id_list: List[str] = []

    for art in sorted(out.rglob("*.json")):
        # Skip debug and build-info blobs
        if art.name.endswith(".dbg.json") or "build-info" in art.parts:
            continue

        try:
            meta = json.loads(art.read_text())
        except (OSError, ValueError) as e:
            logger.debug("skipping unreadable artifact %s: %s", art, e)
            continue

        if not isinstance(meta, dict):
            continue

        # 1. Try legacy keys
        source = meta.get("sourcePath") or meta.get("sourceName")
        name = meta.get("contractName")

        # 2. Prefer metadata.settings.compilationTarget
        md = meta.get("metadata")
        if md:
            try:
                md_obj = json.loads(md) if isinstance(md, str) else md
                comp_target = md_obj.get("settings", {}).get("compilationTarget", {})
            except (ValueError, AttributeError):
                comp_target = {}
            if comp_target:
                # there should be exactly one entry
                source, name = next(iter(comp_target.items()))

        # 3. Derive from artifact path if still missing
        if not source and art.parent.name.endswith(".sol"):
            source = art.parent.relative_to(out).as_posix()
        if not name:
            name = art.stem

        if not source or not name:
            continue

        ident = f"{source}:{name}"
        if ident.startswith(IGNORE_PREFIXES):
            continue
        if ident not in seen:
            seen.add(ident)
            id_list.append(ident)

    return id_list
