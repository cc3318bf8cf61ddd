"""Subscription billing and reconciliation engine for fixed-fee internet plans."""

__version__ = "0.1.0"
