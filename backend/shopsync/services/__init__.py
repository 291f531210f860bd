"""Ingestion services: credentials, reconciliation, fetching, sync and metrics."""
