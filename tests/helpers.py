"""Builders for layouts used across the test suite."""

import json

from storage_check.layout import StorageLayout, StorageVariable


def var(name, type_signature="t_uint256", byte_size=32, slot=0, offset=0, **kwargs):
    return StorageVariable(name, type_signature, byte_size, slot, offset, **kwargs)


def layout(*variables):
    return StorageLayout(variables)


def forge_json(*entries):
    """Build a `forge inspect --json` document from (label, type, slot, offset, bytes) tuples."""
    storage, types = [], {}
    for label, type_id, slot, offset, size in entries:
        storage.append(
            {
                "astId": 1,
                "contract": "src/Vault.sol:Vault",
                "label": label,
                "offset": offset,
                "slot": str(slot),
                "type": type_id,
            }
        )
        types[type_id] = {"encoding": "inplace", "label": type_id[2:], "numberOfBytes": str(size)}
    return json.dumps({"storage": storage, "types": types})
