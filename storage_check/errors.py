"""Exceptions raised by storage_check."""

from __future__ import annotations

from typing import List, Optional


class StorageCheckError(Exception):
    """Base class for failures that abort a check."""


class MalformedLayoutError(StorageCheckError):
    """The raw layout could not be turned into well-formed variables."""


class SourceLocationNotFoundError(StorageCheckError):
    """A variable present in the head layout has no declaration in the source."""

    def __init__(self, name: str, path: str):
        super().__init__(
            f'no declaration of "{name}" found in {path}; '
            "the storage layout and the source file disagree"
        )
        self.name = name
        self.path = path


class ToolError(StorageCheckError):
    """An external command exited non-zero."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ""):
        super().__init__(f"{' '.join(cmd)} failed with exit code {returncode}\n{stderr}".rstrip())
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr


class ArtifactNotFoundError(StorageCheckError):
    def __init__(self, name: str, repository: Optional[str] = None):
        where = f" on repository {repository}" if repository else ""
        super().__init__(f'No workflow run found with an artifact named "{name}"{where}')
        self.name = name
