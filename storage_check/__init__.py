"""Storage layout safety checks for upgradeable Foundry contracts."""

__version__ = "0.2.0"
