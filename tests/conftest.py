"""Shared fixtures for storage_check tests."""

import pytest

from .helpers import layout, var

VAULT_SOURCE = """\
// SPDX-License-Identifier: MIT
pragma solidity ^0.8.20;

contract VaultStorage {
    address public owner;
    uint256 internal totalShares;
}

contract Vault is VaultStorage {
    uint256 public constant FEE = 30; // contract Fake { uint256 x; } "quote ; inside"
    address public immutable asset;
    mapping(address => uint256) public balances;
    uint128 public cap = 1e18;

    event Deposit(address indexed who, uint256 amount);

    struct Position { uint256 size; }

    constructor(address asset_) { asset = asset_; }

    function deposit(uint256 amount) external {
        uint256 local = amount;
        balances[msg.sender] += local;
    }
}
"""


@pytest.fixture
def vault_source(tmp_path):
    path = tmp_path / "src" / "Vault.sol"
    path.parent.mkdir(parents=True)
    path.write_text(VAULT_SOURCE)
    return path


@pytest.fixture
def base_layout():
    return layout(
        var("owner", "t_address", 20, 0, 0),
        var("totalShares", "t_uint256", 32, 1, 0),
        var("balances", "t_mapping(t_address,t_uint256)", 32, 2, 0),
        var("cap", "t_uint128", 16, 3, 0),
    )
