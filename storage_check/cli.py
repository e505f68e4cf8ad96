"""
storage-check
~~~~~~~~~~~~~

Catch storage layout changes that would corrupt an upgradeable contract.

Usage
-----
    storage-check check --contract src/Vault.sol --base main --head my-branch
    storage-check compare base.json head.json --source src/Vault.sol
    storage-check diff <OLD_COMMIT> <NEW_COMMIT>

``check`` is meant for CI:
1. runs `forge inspect <contract> storageLayout` on the current checkout;
2. writes the report that the workflow uploads as an artifact;
3. on pull requests, downloads the base branch's report, diffs both layouts
   and emits one GitHub annotation per change;
4. fails when a change is unsafe for an in-place upgrade.

``compare`` diffs two saved reports, ``diff`` every contract between two git
revisions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import git
import requests
import typer
from colorama import Fore, Style, init as colorama_init

from . import annotations, forge
from .artifacts import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_WAIT,
    DEFAULT_RETRY_DELAY,
    ArtifactStore,
    read_report,
    report_name,
    report_path,
)
from .check import CheckOptions, check_layouts, is_unsafe
from .diff import DiffKind, DiffRecord, diff_layouts
from .errors import StorageCheckError, ToolError
from .layout import StorageLayout, StorageVariable, parse_layout
from .onchain import Web3StorageReader
from .resolve import FormattedDiff, resolve_diff
from .source import parse_source

logger = logging.getLogger(__name__)

EXIT_UNSAFE = 1
EXIT_ERROR = 2

UNSAFE_MESSAGE = "Unsafe storage layout changes detected. Please see above for details."

# ──────────────────────────────────────────────
# CLI set-up
# ──────────────────────────────────────────────
app = typer.Typer(help="Check storage layout changes of upgradeable contracts")
colorama_init()  # enable ANSI colours on Windows too


class _EchoHandler(logging.Handler):
    """Send log records through typer so they follow the current stderr."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            typer.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output")) -> None:
    package_logger = logging.getLogger("storage_check")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    if not any(isinstance(h, _EchoHandler) for h in package_logger.handlers):
        handler = _EchoHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        package_logger.addHandler(handler)


@dataclass(frozen=True)
class CheckConfig:
    contract: str
    base: str
    head: str
    working_directory: Path = Path(".")
    address: Optional[str] = None
    rpc_url: Optional[str] = None
    fail_on_removal: bool = False
    token: Optional[str] = None
    repository: Optional[str] = None
    event_name: Optional[str] = None
    retry_delay: float = DEFAULT_RETRY_DELAY
    max_wait: float = DEFAULT_MAX_WAIT
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    out_dir: Path = Path(".")

    @property
    def source_path(self) -> Path:
        return self.working_directory / self.contract.split(":", 1)[0]

    @property
    def contract_name(self) -> str:
        path, _, name = self.contract.partition(":")
        return name or Path(path).stem

    def options(self) -> CheckOptions:
        reader = Web3StorageReader(self.rpc_url) if self.address and self.rpc_url else None
        return CheckOptions(check_removals=self.fail_on_removal, address=self.address, reader=reader)


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────
def _fail(e: Exception) -> typer.Exit:
    typer.secho(f"❌  {e}", fg=typer.colors.RED, err=True)
    logger.debug("aborted", exc_info=e)
    return typer.Exit(EXIT_ERROR)


def evaluate(
    base: StorageLayout,
    head: StorageLayout,
    source_path: Path,
    contract_name: Optional[str],
    options: CheckOptions,
) -> List[FormattedDiff]:
    """Diff both layouts and anchor every difference in the head source."""
    diffs = check_layouts(base, head, options)
    if not diffs:
        return []
    logger.info("parse source code of %s", source_path)
    source = parse_source(source_path)
    return [resolve_diff(source, d, contract_name) for d in diffs]


def _echo_formatted(formatted: List[FormattedDiff], path: str) -> None:
    for f in formatted:
        colour = typer.colors.RED if f.is_error else typer.colors.YELLOW
        typer.secho(
            f"{f.severity}: {f.title} ({path}:{f.loc.start.line}:{f.loc.start.column})",
            fg=colour,
            bold=True,
        )
        typer.echo(f"    {f.message}")


def run_check(config: CheckConfig) -> List[FormattedDiff]:
    with annotations.group(f'Generate storage layout of contract "{config.contract}" using foundry forge'):
        logger.info("start forge process")
        head_raw = forge.create_layout(config.contract, config.working_directory)
        logger.info("parse generated layout")
        head_layout = parse_layout(head_raw)

    name = report_name(config.contract, config.working_directory)
    out_report = config.out_dir / report_path(config.head, name)
    out_report.write_text(head_raw, encoding="utf-8")
    typer.echo(f"Storage layout report written to {out_report}")
    # the upload step must use the file name as artifact name, wait_for looks it up
    annotations.set_output("report", str(out_report))
    annotations.set_output("artifact", out_report.name)

    if config.event_name != "pull_request":
        return []
    if not config.repository:
        raise StorageCheckError("a repository (owner/name) is required to fetch the base report")

    base_report = report_path(config.base, name)
    store = ArtifactStore(config.repository, config.token)
    with annotations.group(
        f'Searching artifact "{base_report}" on repository "{config.repository}", on branch "{config.base}"'
    ):
        artifact = store.wait_for(
            base_report,
            retry_delay=config.retry_delay,
            max_wait=config.max_wait,
            max_attempts=config.max_attempts,
        )

    with annotations.group(f'Downloading artifact "{base_report}" with ID "{artifact.id}"'):
        base_layout = parse_layout(read_report(store.download(artifact)))

    with annotations.group("Check storage layout"):
        formatted = evaluate(
            base_layout, head_layout, config.source_path, config.contract_name, config.options()
        )
        for f in formatted:
            annotations.annotate(str(f.severity), f.message, file=str(config.source_path), loc=f.loc, title=f.title)
    return formatted


# ──────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────
@app.command()
def check(
    contract: str = typer.Option(
        ..., envvar="INPUT_CONTRACT", help="Contract to check, e.g. 'src/Vault.sol' or 'src/Vault.sol:Vault'"
    ),
    base: str = typer.Option(..., envvar="INPUT_BASE", help="Branch whose report is the reference"),
    head: str = typer.Option(..., envvar="INPUT_HEAD", help="Branch being checked"),
    working_directory: Path = typer.Option(
        Path("."), "--working-directory", envvar="INPUT_WORKINGDIRECTORY", help="Foundry project root"
    ),
    address: Optional[str] = typer.Option(
        None, envvar="INPUT_ADDRESS", help="Deployed address used as on-chain evidence for removals"
    ),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", envvar="INPUT_RPCURL", help="RPC endpoint for --address"),
    fail_on_removal: bool = typer.Option(
        False, "--fail-on-removal", envvar="INPUT_FAILONREMOVAL", help="Treat removed variables as errors"
    ),
    token: Optional[str] = typer.Option(None, envvar=["GITHUB_TOKEN", "INPUT_TOKEN"], help="GitHub API token"),
    repository: Optional[str] = typer.Option(None, envvar="GITHUB_REPOSITORY", help="owner/name"),
    event_name: Optional[str] = typer.Option(None, envvar="GITHUB_EVENT_NAME", help="Triggering event"),
    retry_delay: float = typer.Option(
        DEFAULT_RETRY_DELAY, envvar="INPUT_RETRYDELAY", help="Seconds between artifact lookups"
    ),
    max_wait: float = typer.Option(DEFAULT_MAX_WAIT, help="Give up looking for the base report after this many seconds"),
    max_attempts: int = typer.Option(DEFAULT_MAX_ATTEMPTS, help="Give up after this many artifact lookups"),
    out_dir: Path = typer.Option(Path("."), help="Where to write the head report"),
) -> None:
    """
    Generate the head layout, compare it with the base branch's report and
    annotate every change.

    The head report is written to OUT_DIR as "<head>.<stem>-<hash>.json", with
    "/" in the branch replaced by "-". Upload it as an artifact of exactly that
    name: pull-request runs look up "<base>.<stem>-<hash>.json". Under GitHub
    Actions the path and name are also set as the step outputs "report" and
    "artifact".
    """
    config = CheckConfig(
        contract=contract,
        base=base,
        head=head,
        working_directory=working_directory,
        address=address,
        rpc_url=rpc_url,
        fail_on_removal=fail_on_removal,
        token=token,
        repository=repository,
        event_name=event_name,
        retry_delay=retry_delay,
        max_wait=max_wait,
        max_attempts=max_attempts,
        out_dir=out_dir,
    )
    try:
        formatted = run_check(config)
    except (StorageCheckError, requests.RequestException, OSError) as e:
        annotations.annotate("error", str(e), title="Storage layout check failed")
        raise _fail(e)

    if is_unsafe(formatted, config.fail_on_removal):
        typer.secho(f"❌  {UNSAFE_MESSAGE}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_UNSAFE)
    typer.echo("✅  Storage layout is compatible.")


@app.command()
def compare(
    old: Path = typer.Argument(..., exists=True, dir_okay=False, help="Base layout report"),
    new: Path = typer.Argument(..., exists=True, dir_okay=False, help="Head layout report"),
    source: Path = typer.Option(..., "--source", "-s", exists=True, dir_okay=False, help="Head Solidity source"),
    contract: Optional[str] = typer.Option(None, "--contract", "-c", help="Contract name inside --source"),
    fail_on_removal: bool = typer.Option(False, "--fail-on-removal", help="Treat removed variables as errors"),
    address: Optional[str] = typer.Option(None, help="Deployed address used as on-chain evidence"),
    rpc_url: Optional[str] = typer.Option(None, "--rpc-url", help="RPC endpoint for --address"),
    github: bool = typer.Option(False, "--github", help="Emit GitHub workflow annotations"),
) -> None:
    """Compare two saved storage layout reports."""
    reader = Web3StorageReader(rpc_url) if address and rpc_url else None
    options = CheckOptions(check_removals=fail_on_removal, address=address, reader=reader)
    try:
        base_layout = parse_layout(old.read_bytes())
        head_layout = parse_layout(new.read_bytes())
        formatted = evaluate(base_layout, head_layout, source, contract, options)
    except (StorageCheckError, OSError) as e:
        raise _fail(e)

    if github:
        for f in formatted:
            annotations.annotate(str(f.severity), f.message, file=str(source), loc=f.loc, title=f.title)
    else:
        _echo_formatted(formatted, str(source))

    if is_unsafe(formatted, fail_on_removal):
        typer.secho(f"❌  {UNSAFE_MESSAGE}", fg=typer.colors.RED, err=True)
        raise typer.Exit(EXIT_UNSAFE)
    typer.echo(f"✅  No unsafe storage layout change ({len(formatted)} note(s)).")


# ──────────────────────────────────────────────
# Local diff across git revisions
# ──────────────────────────────────────────────
def _collect_layouts(repo: git.Repo, ref: str, include_paths: Optional[List[str]]) -> Dict[str, StorageLayout]:
    """
    • checkout `ref`
    • compile with Foundry
    • return {contract → StorageLayout}
    """
    repo.git.checkout(ref)
    # ensure submodules match that revision
    repo.git.submodule("update", "--init", "--recursive")

    forge.build()

    all_idents = forge.artifact_contract_ids()
    if include_paths:
        all_idents = [i for i in all_idents if i.startswith(tuple(include_paths))]

    total = len(all_idents)
    layouts: Dict[str, StorageLayout] = {}
    for idx, ident in enumerate(all_idents, 1):
        typer.echo(f"      [{idx}/{total}] {ident}", err=True)
        try:
            layout = parse_layout(forge.create_layout(ident))
        except ToolError as e:
            # libraries and interfaces have no storage layout
            logger.debug("no layout for %s: %s", ident, e)
            continue
        if len(layout):
            layouts[ident] = layout

    return layouts


def _fmt(var: StorageVariable) -> str:
    return f"[slot {var.slot:>3} | offset {var.offset:>2}] {var.name} : {var.display_type}"


_STYLES: Dict[DiffKind, Tuple[str, str]] = {
    DiffKind.SLOT_CHANGED: (Fore.YELLOW, "↷"),
    DiffKind.TYPE_CHANGED: (Fore.MAGENTA, "≠"),
    DiffKind.VARIABLE_RENAMED: (Fore.CYAN, "~"),
    DiffKind.VARIABLE_REMOVED: (Fore.RED, "−"),
    DiffKind.VARIABLE_ADDED: (Fore.GREEN, "+"),
}


def _describe(d: DiffRecord) -> str:
    b, h = d.base_variable, d.head_variable
    if d.kind is DiffKind.SLOT_CHANGED:
        return f"{h.name} : {h.display_type}  {b.slot}/{b.offset} → {h.slot}/{h.offset}"
    if d.kind is DiffKind.TYPE_CHANGED:
        return f"{_fmt(h)}  (was {b.display_type})"
    if d.kind is DiffKind.VARIABLE_RENAMED:
        return f"{_fmt(h)}  (was {b.name})"
    return _fmt(h or b)


def _diff_one(contract: str, old_: StorageLayout, new_: StorageLayout) -> bool:
    """Print every difference of one contract; return True if any was found."""
    diffs = diff_layouts(old_, new_)
    if not diffs:
        return False

    typer.secho(f"\nContract: {contract.split(':')[-1]}", fg=typer.colors.CYAN, bold=True)
    for kind in _STYLES:
        colour, mark = _STYLES[kind]
        for d in diffs:
            if d.kind is kind:
                typer.echo(colour + f"{mark} " + _describe(d) + Style.RESET_ALL)
    return True


@app.command()
def diff(
    old_commit: str = typer.Argument(..., help="older git commit / tag / branch"),
    new_commit: str = typer.Argument(..., help="newer git commit / tag / branch"),
    path: List[str] = typer.Option(
        None,
        "--path",
        "-p",
        help="Source-file prefix(es) to include, e.g. 'src/' or 'contracts/MyLib.sol'. "
             "If omitted, every contract in the project is inspected.",
    ),
) -> None:
    """
    Compare storage layouts between *all* contracts at two git revisions.

    Prints only the differences (added, removed, renamed, retyped, moved).
    """
    repo = git.Repo(Path("."), search_parent_directories=True)

    if repo.is_dirty(untracked_files=True):
        typer.secho("⚠️  Please commit or stash your changes first.", fg=typer.colors.RED)
        raise typer.Exit(1)

    current = repo.head.commit.hexsha  # to restore later

    try:
        typer.echo(f"⏳  Collecting layouts at {old_commit} …")
        old_layouts = _collect_layouts(repo, old_commit, path)

        typer.echo(f"⏳  Collecting layouts at {new_commit} …")
        new_layouts = _collect_layouts(repo, new_commit, path)
    except StorageCheckError as e:
        raise _fail(e)
    finally:
        repo.git.checkout(current)
        try:
            repo.git.submodule("update", "--init", "--recursive")
        except git.GitCommandError:
            # if project has no submodules, ignore
            pass

    for c in sorted(set(old_layouts) | set(new_layouts)):
        _diff_one(c, old_layouts.get(c, StorageLayout()), new_layouts.get(c, StorageLayout()))

    typer.echo("\n✅  Done.")


# ──────────────────────────────────────────────
# Entrypoint
# ──────────────────────────────────────────────
if __name__ == "__main__":
    app()
