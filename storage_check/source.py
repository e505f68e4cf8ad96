"""
Solidity source scanner.

Finds contract declarations and their state variable declarations with enough
precision to anchor an annotation on the right lines. This is not a Solidity
parser: comments and string literals are blanked out, braces are matched, and
every item at the top level of a contract body that ends with ``;`` and does
not start with a keyword such as ``event`` or ``function <name>`` is taken to
be a state variable. A function-typed variable (``function (uint256) external
handler;``) is one. ``constant`` and ``immutable`` variables take no storage and
are skipped.
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .errors import StorageCheckError

logger = logging.getLogger(__name__)

_CONTRACT_RE = re.compile(r"\b(?:abstract\s+)?(contract|library|interface)\s+([A-Za-z_$][\w$]*)")
_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_NOT_A_VARIABLE = {
    "event", "error", "modifier", "using", "struct", "enum",
    "constructor", "fallback", "receive", "type", "pragma", "import",
}
_NOT_IN_STORAGE = re.compile(r"\b(constant|immutable)\b")
# `function f(...)` declares a function, `function (...) ... f` a function-typed variable
_FUNCTION_DECL_RE = re.compile(r"function\s+[A-Za-z_$]")


@dataclass(frozen=True)
class Position:
    line: int
    column: int


@dataclass(frozen=True)
class SourceSpan:
    start: Position
    end: Position


@dataclass
class ContractDefinition:
    name: str
    kind: str
    loc: SourceSpan
    variables: Dict[str, SourceSpan] = field(default_factory=dict)


@dataclass
class SourceDefinition:
    path: str
    contracts: List[ContractDefinition] = field(default_factory=list)

    def contract(self, name: Optional[str] = None) -> Optional[ContractDefinition]:
        """Return the contract called ``name``; the last declared one when ``name`` is None."""
        if name is None:
            return self.contracts[-1] if self.contracts else None
        for definition in self.contracts:
            if definition.name == name:
                return definition
        return None

    def find_variable(self, name: str, contract_name: Optional[str] = None) -> Optional[SourceSpan]:
        """Look in the target contract first, then in the other contracts of the file."""
        target = self.contract(contract_name)
        ordered = ([target] if target else []) + [c for c in self.contracts if c is not target]
        for definition in ordered:
            if name in definition.variables:
                return definition.variables[name]
        return None


# ──────────────────────────────────────────────
# Scanning
# ──────────────────────────────────────────────
def _blank(text: str) -> str:
    """Replace comments and string literals with spaces, keeping offsets and newlines."""
    out = list(text)
    i, n = 0, len(text)

    def wipe(a: int, b: int) -> None:
        for k in range(a, b):
            if out[k] != "\n":
                out[k] = " "

    while i < n:
        if text.startswith("//", i):
            j = text.find("\n", i)
            j = n if j == -1 else j
            wipe(i, j)
            i = j
        elif text.startswith("/*", i):
            j = text.find("*/", i + 2)
            j = n if j == -1 else j + 2
            wipe(i, j)
            i = j
        elif text[i] in "\"'":
            quote, j = text[i], i + 1
            while j < n and text[j] != quote and text[j] != "\n":
                j += 2 if text[j] == "\\" else 1
            wipe(i + 1, min(j, n))
            i = j + 1
        else:
            i += 1
    return "".join(out)


class _Lines:
    def __init__(self, text: str):
        self._starts = [0] + [m.end() for m in re.finditer("\n", text)]

    def position(self, offset: int) -> Position:
        line = bisect.bisect_right(self._starts, offset) - 1
        return Position(line + 1, offset - self._starts[line] + 1)

    def span(self, start: int, end: int) -> SourceSpan:
        return SourceSpan(self.position(start), self.position(end))


def _matching_brace(text: str, open_at: int) -> int:
    depth = 0
    for i in range(open_at, len(text)):
        if text[i] == "{":
            depth += 1
        elif text[i] == "}":
            depth -= 1
            if depth == 0:
                return i
    return len(text) - 1


def _body_items(text: str, start: int, end: int) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` of every ``;``-terminated item at the top level of a body."""
    braces = parens = 0
    item_start = start
    for i in range(start, end):
        ch = text[i]
        if ch in "([":
            parens += 1
        elif ch in ")]":
            parens -= 1
        elif parens == 0 and ch == "{":
            braces += 1
        elif parens == 0 and ch == "}":
            braces -= 1
            if braces == 0:
                item_start = i + 1
        elif ch == ";" and braces == 0 and parens == 0:
            yield item_start, i
            item_start = i + 1


def _declared_name(declaration: str) -> Optional[str]:
    head = declaration
    depth = 0
    for i, ch in enumerate(declaration):
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth -= 1
        elif ch == "=" and depth == 0 and declaration[i + 1:i + 2] != ">":
            head = declaration[:i]
            break
    names = _IDENT_RE.findall(head)
    return names[-1] if names else None


def _scan_contract(text: str, lines: _Lines, match: re.Match) -> Tuple[ContractDefinition, int]:
    open_at = text.find("{", match.end())
    if open_at == -1:
        close_at = len(text) - 1
        return ContractDefinition(match.group(2), match.group(1), lines.span(match.start(), close_at)), close_at
    close_at = _matching_brace(text, open_at)
    definition = ContractDefinition(match.group(2), match.group(1), lines.span(match.start(), close_at))

    for item_start, item_end in _body_items(text, open_at + 1, close_at):
        declaration = text[item_start:item_end]
        stripped = declaration.strip()
        if not stripped:
            continue
        first = _IDENT_RE.match(stripped)
        if first is None or _NOT_IN_STORAGE.search(stripped):
            continue
        keyword = first.group(0)
        if keyword == "function":
            if _FUNCTION_DECL_RE.match(stripped):
                continue
        elif keyword in _NOT_A_VARIABLE:
            continue
        name = _declared_name(stripped)
        if name is None:
            continue
        lead = item_start + (len(declaration) - len(declaration.lstrip()))
        definition.variables[name] = lines.span(lead, item_end)
    return definition, close_at


def parse_source_text(text: str, path: str = "<source>") -> SourceDefinition:
    blanked = _blank(text)
    lines = _Lines(text)
    source = SourceDefinition(path=path)
    position = 0
    for match in _CONTRACT_RE.finditer(blanked):
        if match.start() < position:
            continue  # nested in the previous contract body
        definition, position = _scan_contract(blanked, lines, match)
        source.contracts.append(definition)
    logger.debug("scanned %s: %d contract(s)", path, len(source.contracts))
    return source


def parse_source(path: Union[str, Path]) -> SourceDefinition:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise StorageCheckError(f"{path} is not UTF-8 text: {exc}") from exc
    return parse_source_text(text, str(path))
