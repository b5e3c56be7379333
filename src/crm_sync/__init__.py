"""Incremental synchronization of CRM records into a document store."""

__version__ = "0.1.0"
