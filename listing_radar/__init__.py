"""Listing Radar - listing alert ingestion from a Gmail mailbox."""

__version__ = "0.1.0"
