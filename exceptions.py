"""Errors raised while validating a license key against the inference service."""


class LicenseValidationError(Exception):
    """Base class for license validation errors."""


class PersistenceError(LicenseValidationError):
    """The processor settings could not be read or written."""


class ProbeError(LicenseValidationError):
    """The inference service ping failed."""


class CredentialRejected(ProbeError):
    """The inference service refused the license key (401/403)."""


class ServiceUnreachable(ProbeError):
    """Timeout, connection, TLS or protocol failure while pinging the service."""


class RollbackFailed(LicenseValidationError):
    """
    Restoring the previous settings failed after a failed validation.

    The persisted settings are now unknown, so no further attempts may run.
    """


class SessionStateError(LicenseValidationError):
    """An action was requested that the session's current state does not allow."""
