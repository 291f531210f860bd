"""shopsync: multi-tenant Shopify ingestion service."""

__version__ = "0.1.0"
