"""DeFi Watch: multi-model AI audit consensus for smart contracts."""

__version__ = "2.0.0"
