"""
Error taxonomy for the CRM core.

    CrmError
    ├── ValidationError      malformed input to a core operation
    ├── NotFoundError        referenced id absent from the store
    ├── StoreError           underlying persistence failure
    └── PartialAuditFailure  contact write committed, audit write failed

ValidationError also subclasses ValueError and NotFoundError subclasses
LookupError, so callers that only know the builtins still catch them.
PartialAuditFailure is a UserWarning: it is reported through warnings.warn,
never raised out of a successful contact mutation.
"""


class CrmError(Exception):
    """Base class for every error raised by the CRM core."""


class ValidationError(CrmError, ValueError):
    pass


class NotFoundError(CrmError, LookupError):
    def __init__(self, kind: str, record_id):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} {record_id!r} not found")


class StoreError(CrmError):
    pass


class PartialAuditFailure(CrmError, UserWarning):
    """The contact mutation stands; its audit event could not be written."""

    def __init__(self, contact_id, kind: str, cause: Exception):
        self.contact_id = contact_id
        self.kind = kind
        self.cause = cause
        super().__init__(
            f"contact {contact_id!r} was saved but its {kind} audit event failed: "
            f"{type(cause).__name__}: {cause}"
        )
