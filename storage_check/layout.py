"""
Storage layout model and parser.

A layout is the ordered list of persistent variables that ``forge inspect
<Contract> storageLayout`` reports, each placed at a ``(slot, offset)`` with a
byte size. Two formats are understood:

* the JSON document (``{"storage": [...], "types": {...}}``) or a bare list of
  entries, and
* the pretty table printed with ``--pretty``
  (``| Name | Type | Slot | Offset | Bytes | Contract |``).
"""

from __future__ import annotations

import dataclasses
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .errors import MalformedLayoutError

logger = logging.getLogger(__name__)

WORD_SIZE = 32
MAX_SLOT = 2**256

# Solidity embeds AST ids in struct/enum/contract type ids: t_struct(Foo)123_storage
_AST_ID_RE = re.compile(r"\)\d+")
_TABLE_SEPARATOR_RE = re.compile(r"^[\s|+=:\-]*$")


@dataclass(frozen=True)
class StorageVariable:
    name: str
    type_signature: str
    byte_size: int
    slot: int
    offset: int
    type_label: Optional[str] = field(default=None, compare=False)
    contract: Optional[str] = field(default=None, compare=False)

    @property
    def position(self) -> Tuple[int, int]:
        return (self.slot, self.offset)

    @property
    def start(self) -> int:
        """First byte of the variable, counted from the start of storage."""
        return self.slot * WORD_SIZE + self.offset

    @property
    def end(self) -> int:
        return self.start + self.byte_size

    @property
    def display_type(self) -> str:
        return self.type_label or self.type_signature

    @property
    def declared_name(self) -> str:
        """Name as written in source, without the qualifier of a repeated label."""
        return self.name.rpartition(".")[2]

    @property
    def qualifier(self) -> Optional[str]:
        return self.name.rpartition(".")[0] or None


class StorageLayout:
    """Immutable, ordered collection of :class:`StorageVariable`."""

    def __init__(self, variables=()):
        self._variables: Tuple[StorageVariable, ...] = tuple(variables)
        self._by_name: Dict[str, StorageVariable] = {}
        for var in self._variables:
            if var.name in self._by_name:
                raise MalformedLayoutError(f'duplicate storage variable "{var.name}"')
            self._by_name[var.name] = var
        _check_overlaps(self._variables)

    def __iter__(self) -> Iterator[StorageVariable]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def __getitem__(self, index: int) -> StorageVariable:
        return self._variables[index]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StorageLayout):
            return NotImplemented
        return self._variables == other._variables

    def __repr__(self) -> str:
        return f"StorageLayout({list(self._variables)!r})"

    @property
    def variables(self) -> Tuple[StorageVariable, ...]:
        return self._variables

    def by_name(self) -> Mapping[str, StorageVariable]:
        return dict(self._by_name)

    def names(self) -> List[str]:
        return [v.name for v in self._variables]

    def end(self) -> int:
        """One past the last byte used by any variable (0 when empty)."""
        return max((v.end for v in self._variables), default=0)


def _check_overlaps(variables: Tuple[StorageVariable, ...]) -> None:
    occupied = sorted((v for v in variables if v.byte_size > 0), key=lambda v: (v.start, v.end))
    previous: Optional[StorageVariable] = None
    for var in occupied:
        if previous is not None and var.start < previous.end:
            raise MalformedLayoutError(
                f'storage variables "{previous.name}" and "{var.name}" overlap '
                f"(slot {var.slot}, offset {var.offset})"
            )
        if previous is None or var.end > previous.end:
            previous = var


# ──────────────────────────────────────────────
# Parsing
# ──────────────────────────────────────────────
def normalize_type(type_id: str) -> str:
    """Drop AST ids so that recompiling alone never changes a type signature."""
    return _AST_ID_RE.sub(")", type_id.strip())


def _to_int(value: Any, what: str, name: str) -> int:
    if isinstance(value, bool):
        raise MalformedLayoutError(f'{what} of "{name}" is not a number: {value!r}')
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            number = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            raise MalformedLayoutError(f'{what} of "{name}" is not a number: {value!r}') from None
    else:
        raise MalformedLayoutError(f'{what} of "{name}" is not a number: {value!r}')
    if number < 0:
        raise MalformedLayoutError(f'{what} of "{name}" is negative: {number}')
    return number


def make_variable(
    name: Any,
    type_id: Any,
    byte_size: Any,
    slot: Any,
    offset: Any,
    type_label: Optional[str] = None,
    contract: Optional[str] = None,
) -> StorageVariable:
    """Validate raw field values and build a :class:`StorageVariable`."""
    if not isinstance(name, str) or not name.strip():
        raise MalformedLayoutError(f"storage variable without a name: {name!r}")
    name = name.strip()
    if not isinstance(type_id, str) or not type_id.strip():
        raise MalformedLayoutError(f'storage variable "{name}" has no type')

    size = _to_int(byte_size, "byte size", name)
    slot_n = _to_int(slot, "slot", name)
    offset_n = _to_int(offset, "offset", name)

    if slot_n >= MAX_SLOT:
        raise MalformedLayoutError(f'slot of "{name}" is out of range: {slot_n}')
    if offset_n >= WORD_SIZE:
        raise MalformedLayoutError(f'offset of "{name}" is out of range [0, {WORD_SIZE}): {offset_n}')
    if size > WORD_SIZE:
        if offset_n != 0:
            raise MalformedLayoutError(f'"{name}" spans several slots but starts at offset {offset_n}')
    elif offset_n + size > WORD_SIZE:
        raise MalformedLayoutError(
            f'"{name}" ({size} bytes at offset {offset_n}) crosses the end of slot {slot_n}'
        )

    return StorageVariable(
        name=name,
        type_signature=normalize_type(type_id),
        byte_size=size,
        slot=slot_n,
        offset=offset_n,
        type_label=type_label,
        contract=contract,
    )


def _entry_size(entry: Mapping[str, Any], type_id: str, types: Mapping[str, Any], name: str) -> Any:
    for key in ("numberOfBytes", "bytes", "size", "byteSize"):
        if key in entry:
            return entry[key]
    info = types.get(type_id)
    if isinstance(info, Mapping) and "numberOfBytes" in info:
        return info["numberOfBytes"]
    raise MalformedLayoutError(f'byte size of "{name}" is missing (type {type_id!r})')


def _qualify_repeated(variables: List[StorageVariable]) -> List[StorageVariable]:
    """
    Prefix labels declared by several contracts of the inheritance chain with
    the declaring contract, e.g. ``OwnableUpgradeable.__gap``.
    """
    counts = Counter(v.name for v in variables)
    qualified = []
    for var in variables:
        if counts[var.name] > 1 and var.contract:
            owner = var.contract.rpartition(":")[2]
            var = dataclasses.replace(var, name=f"{owner}.{var.name}")
        qualified.append(var)
    return qualified


def _parse_entries(items: Any, types: Mapping[str, Any]) -> StorageLayout:
    if not isinstance(items, list):
        raise MalformedLayoutError(f"expected a list of storage entries, got {type(items).__name__}")

    variables: List[StorageVariable] = []
    for index, it in enumerate(items):
        if not isinstance(it, Mapping):
            raise MalformedLayoutError(f"storage entry #{index} is not an object")
        name = it.get("label", it.get("name"))
        for key in ("type", "slot", "offset"):
            if key not in it:
                raise MalformedLayoutError(f'storage entry #{index} ("{name}") has no "{key}"')
        type_id = it["type"]
        if not isinstance(type_id, str):
            raise MalformedLayoutError(f'type of storage entry #{index} is not a string: {type_id!r}')
        info = types.get(type_id)
        label = info.get("label") if isinstance(info, Mapping) else None
        variables.append(
            make_variable(
                name,
                type_id,
                _entry_size(it, type_id, types, str(name)),
                it["slot"],
                it["offset"],
                type_label=label,
                contract=it.get("contract"),
            )
        )
    return StorageLayout(_qualify_repeated(variables))


def _parse_table(raw: str) -> StorageLayout:
    """Parse the pretty table (| Name | Type | Slot | Offset | Bytes | Contract |)."""
    variables: List[StorageVariable] = []
    for line in raw.splitlines():
        line = line.strip()
        if not line.startswith("|") or _TABLE_SEPARATOR_RE.match(line):
            continue
        cols = [c.strip() for c in line.split("|")[1:-1]]
        if not cols or cols[0].lower() in ("name", "variable", ""):
            continue  # header
        if len(cols) < 5:
            raise MalformedLayoutError(f"storage table row has {len(cols)} columns: {line!r}")
        name, typ, slot, offset, size = cols[:5]
        contract = cols[5] if len(cols) > 5 else None
        variables.append(make_variable(name, typ, size, slot, offset, contract=contract))
    return StorageLayout(_qualify_repeated(variables))


def parse_layout(raw: Union[str, bytes, Mapping[str, Any], List[Any]]) -> StorageLayout:
    """
    Convert the build tool's layout output into a :class:`StorageLayout`.

    Raises :class:`MalformedLayoutError` when the input cannot be decoded into
    well-formed variables. An empty layout is valid.
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedLayoutError(f"storage layout is not UTF-8 text: {exc}") from exc

    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return StorageLayout()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            if any(line.lstrip().startswith("|") for line in text.splitlines()):
                logger.debug("layout is not JSON, parsing it as a table")
                return _parse_table(text)
            raise MalformedLayoutError(f"storage layout is neither JSON nor a table: {exc}") from exc
    else:
        data = raw

    if isinstance(data, Mapping):
        if "storage" not in data:
            raise MalformedLayoutError('storage layout object has no "storage" key')
        types = data.get("types") or {}
        if not isinstance(types, Mapping):
            raise MalformedLayoutError('"types" of the storage layout is not an object')
        return _parse_entries(data["storage"] or [], types)
    return _parse_entries(data, {})
