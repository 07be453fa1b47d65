"""Dealer contracts: contract lifecycle and multi-party e-signature collection."""

__version__ = "1.0.0"
