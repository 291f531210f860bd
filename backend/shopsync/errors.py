"""
Ingestion Error Taxonomy
========================

Exceptions raised (or returned inside result objects) by the ingestion
pipeline.

Two scopes:

    1. Request-scoped (surfaced immediately)
       - AuthStateMismatch: OAuth state cookie missing or not matching
       - CredentialExchangeFailed: token endpoint refused or returned no token
       - SignatureInvalid: webhook HMAC missing or wrong
       - TenantNotFound: shop domain / tenant id not installed

    2. Unit-scoped (contained, logged, batch continues)
       - MalformedPayload: one record cannot be projected
       - StorageConstraintViolation: one record failed to write
       - UpstreamRequestFailed: one page fetch or one webhook registration failed

RELATED FILES
-------------
- shopsync/services/reconciler.py: MalformedPayload, StorageConstraintViolation
- shopsync/services/paginated_fetcher.py: UpstreamRequestFailed
- shopsync/services/installation_service.py: AuthStateMismatch, CredentialExchangeFailed
- shopsync/routers/shopify_webhooks.py: SignatureInvalid, TenantNotFound
"""

from typing import Optional


class IngestionError(Exception):
    """Base class for every pipeline error. `code` is a stable machine label."""

    code = "ingestion_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class AuthStateMismatch(IngestionError):
    code = "invalid_state"


class CredentialExchangeFailed(IngestionError):
    code = "token_exchange_failed"


class SignatureInvalid(IngestionError):
    code = "invalid_signature"


class TenantNotFound(IngestionError):
    code = "tenant_not_found"


class MalformedPayload(IngestionError):
    code = "malformed_payload"


class StorageConstraintViolation(IngestionError):
    code = "storage_constraint_violation"


class UpstreamRequestFailed(IngestionError):
    """Platform request failed: non-2xx response or transport error."""

    code = "upstream_request_failed"

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data
