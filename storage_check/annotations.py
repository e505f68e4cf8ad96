"""
GitHub Actions workflow commands.

See https://docs.github.com/actions/using-workflows/workflow-commands-for-github-actions
"""

from __future__ import annotations

import contextlib
import os
from typing import Iterator, Optional

import typer

from .source import SourceSpan


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(value: str) -> str:
    return _escape_data(value).replace(":", "%3A").replace(",", "%2C")


def command(name: str, message: str = "", **properties: Optional[object]) -> str:
    props = ",".join(
        f"{key}={_escape_property(str(value))}" for key, value in properties.items() if value is not None
    )
    return f"::{name}{' ' + props if props else ''}::{_escape_data(message)}"


@contextlib.contextmanager
def group(title: str) -> Iterator[None]:
    typer.echo(command("group", title))
    try:
        yield
    finally:
        typer.echo(command("endgroup"))


def annotate(
    level: str,
    message: str,
    file: Optional[str] = None,
    loc: Optional[SourceSpan] = None,
    title: Optional[str] = None,
) -> str:
    """Emit an ``error``/``warning``/``notice`` annotation and return the line written."""
    props = {"file": file, "title": title}
    if loc is not None:
        props.update(line=loc.start.line, endLine=loc.end.line)
        # columns are only honoured on single-line annotations
        if loc.start.line == loc.end.line:
            props.update(col=loc.start.column, endColumn=loc.end.column)
    line = command(level, message, **props)
    typer.echo(line)
    return line


def set_output(name: str, value: str) -> bool:
    """Append ``name=value`` to the step outputs file; False outside GitHub Actions."""
    path = os.environ.get("GITHUB_OUTPUT")
    if not path:
        return False
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(f"{name}={value}\n")
    return True
