"""
Error taxonomy for the upload-and-catalog workflow.

Every error here is scoped to a single request. None of them should
take the process down.
"""


class ShowcaseError(Exception):
    """Base class for workflow errors."""
    pass


class ClientValidationError(ShowcaseError):
    """Wrong MIME type or oversized file, caught before any network call."""
    pass


class AuthorizationError(ShowcaseError):
    """Token issuance or the store's token check rejected the upload."""
    pass


class TransferError(ShowcaseError):
    """The byte transfer to the store failed."""
    pass


class UploadCancelled(TransferError):
    """The caller aborted an in-flight transfer."""
    pass


class CatalogAccessError(ShowcaseError):
    """Listing the store failed. Degraded to an empty catalog."""
    pass


class PersistenceCallbackError(ShowcaseError):
    """
    The completion side effect raised.

    Must be reported back to the store so it redelivers the notification.
    """
    pass
