"""
Storage layout reports stored as GitHub Actions artifacts.

Every run uploads the head layout under a name derived from the branch and the
contract. A pull-request run looks up the base branch's report, polling for a
bounded time since the base workflow may still be running.
"""

from __future__ import annotations

import hashlib
import io
import logging
import re
import time
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

import requests

from .errors import ArtifactNotFoundError, StorageCheckError

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
PER_PAGE = 100

DEFAULT_RETRY_DELAY = 5.0
DEFAULT_MAX_WAIT = 300.0
DEFAULT_MAX_ATTEMPTS = 60

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9_-]")
_BRANCH_SEPARATORS_RE = re.compile(r"[/\\]")


def report_name(contract: str, working_directory: Union[str, Path] = ".") -> str:
    """
    Artifact-safe name for a contract: sanitised file stem plus a short hash of
    its absolute path, so two contracts with the same file name do not clash.
    """
    path = contract.split(":", 1)[0]
    absolute = str((Path(working_directory) / path).resolve())
    digest = hashlib.sha256(absolute.encode("utf-8")).hexdigest()[:8]
    stem = _UNSAFE_CHARS_RE.sub("_", Path(path).stem if path.endswith(".sol") else Path(path).name)
    return f"{stem}-{digest}"


def report_path(branch: str, name: str) -> str:
    return f"{_BRANCH_SEPARATORS_RE.sub('-', branch)}.{name}.json"


@dataclass(frozen=True)
class Artifact:
    id: int
    name: str
    head_sha: Optional[str] = None
    expired: bool = False


class ArtifactStore:
    """Lists and downloads workflow artifacts of one repository."""

    def __init__(
        self,
        repository: str,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30.0,
    ):
        self.repository = repository
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}
        )
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, path: str, **params) -> requests.Response:
        response = self.session.get(f"{self.api_url}{path}", params=params or None, timeout=self.timeout)
        response.raise_for_status()
        return response

    def iter_artifacts(self, name: Optional[str] = None) -> Iterator[Artifact]:
        page = 1
        while True:
            params = {"per_page": PER_PAGE, "page": page}
            if name:
                params["name"] = name
            data = self._get(f"/repos/{self.repository}/actions/artifacts", **params).json()
            items = data.get("artifacts", [])
            for it in items:
                yield Artifact(
                    id=it["id"],
                    name=it["name"],
                    head_sha=(it.get("workflow_run") or {}).get("head_sha"),
                    expired=bool(it.get("expired")),
                )
            if len(items) < PER_PAGE:
                return
            page += 1

    def find(self, name: str) -> Optional[Artifact]:
        """Most recent non-expired artifact called ``name``, if any."""
        for artifact in self.iter_artifacts(name):
            if artifact.name == name and not artifact.expired:
                return artifact
        return None

    def wait_for(
        self,
        name: str,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_wait: float = DEFAULT_MAX_WAIT,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> Artifact:
        """
        Poll until the artifact exists, at most ``max_attempts`` times and for
        at most ``max_wait`` seconds. Raises :class:`ArtifactNotFoundError`.
        """
        deadline = clock() + max_wait
        for attempt in range(1, max_attempts + 1):
            artifact = self.find(name)
            if artifact is not None:
                logger.info(
                    'found artifact "%s" with ID %s from commit %s', name, artifact.id, artifact.head_sha
                )
                return artifact
            if attempt == max_attempts or clock() + retry_delay > deadline:
                break
            logger.info(
                'artifact "%s" not found yet (attempt %d/%d), retrying in %.1fs',
                name, attempt, max_attempts, retry_delay,
            )
            sleep(retry_delay)
        raise ArtifactNotFoundError(name, self.repository)

    def download(self, artifact: Artifact) -> bytes:
        return self._get(f"/repos/{self.repository}/actions/artifacts/{artifact.id}/zip").content


def read_report(archive: bytes) -> str:
    """Text of the report inside a downloaded artifact archive (its last file)."""
    text = None
    try:
        with zipfile.ZipFile(io.BytesIO(archive)) as zf:
            for entry in zf.infolist():
                if entry.is_dir():
                    continue
                logger.info('loading storage layout report from "%s"', entry.filename)
                text = zf.read(entry).decode("utf-8")
    except zipfile.BadZipFile as exc:
        raise StorageCheckError(f"artifact archive is not a valid zip file: {exc}") from exc
    except UnicodeDecodeError as exc:
        raise StorageCheckError(f"artifact report is not UTF-8 text: {exc}") from exc
    if text is None:
        raise StorageCheckError("artifact archive contains no report")
    return text
