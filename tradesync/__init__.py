"""Broker synchronization and trade reconciliation service."""

__version__ = "0.1.0"
