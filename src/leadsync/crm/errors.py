"""Typed CRM error hierarchy.

Every error carries a ``kind`` string matching CRMErrorKind so callers that
prefer result objects over exceptions can classify failures uniformly.
"""

from __future__ import annotations


class CRMError(Exception):
    """Base class for all CRM integration failures."""

    kind: str = "http-error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingCredentialsError(CRMError):
    """Credential bundle is incomplete.

    ``missing_fields`` lists every absent field by display name, never just
    the first one found.
    """

    kind = "missing-credentials"

    def __init__(self, missing_fields: list[str], context: str | None = None) -> None:
        self.missing_fields = list(missing_fields)
        self.context = context
        joined = ", ".join(self.missing_fields)
        if context:
            message = f"Missing required credentials for {context}: {joined}"
        else:
            message = f"Missing required credentials: {joined}"
        super().__init__(message)


class AuthFailedError(CRMError):
    """Remote CRM rejected the API key or OAuth client credentials."""

    kind = "auth-failed"


class CRMHTTPError(CRMError):
    """Non-2xx response from a CRM data call. Message includes the body."""

    kind = "http-error"

    def __init__(self, status_code: int, body: str, operation: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.operation = operation
        prefix = f"{operation} failed" if operation else "CRM request failed"
        super().__init__(f"{prefix} with HTTP {status_code}: {body}")


class NotFoundError(CRMError):
    """Lookup by email, slug or ID returned zero rows."""

    kind = "not-found"


class UnsupportedCRMTypeError(CRMError):
    """CRM type string is not one of the supported integrations."""

    kind = "unsupported-type"

    def __init__(self, crm_type: str) -> None:
        self.crm_type = crm_type
        super().__init__(f"Unsupported CRM type: {crm_type}")


class TransientHTTPError(CRMHTTPError):
    """Rate limiting or gateway failure that is worth retrying."""


TRANSIENT_STATUS_CODES = frozenset({429, 502, 503, 504})
