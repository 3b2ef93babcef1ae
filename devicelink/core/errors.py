"""Domain-specific errors for devicelink."""


class DevicelinkError(Exception):
    """Base error for devicelink."""


class UnsupportedCapabilityError(DevicelinkError):
    """Raised when the host lacks a transport entirely (missing backend library)."""


class NoDeviceSelectedError(DevicelinkError):
    """Raised when no device was picked, or the pick was ambiguous."""


class PermissionDeniedError(DevicelinkError):
    """Raised when the user or the OS declined access to a device."""


class AlreadyOpenError(DevicelinkError):
    """Raised when a handle for the transport is still held."""


class TransportIOError(DevicelinkError):
    """Raised on read/write failures at the native layer."""


class ProtocolError(DevicelinkError):
    """Raised on malformed input or references to unknown endpoints."""


class ProfileNotFoundError(ProtocolError):
    """Raised when a profile id is not in the catalog."""


class SpontaneousDisconnectError(DevicelinkError):
    """Raised when the peer tore the link down on its own."""


class ProfileLoadError(DevicelinkError):
    """Raised when reading profile sources fails."""


class ProfileValidationError(DevicelinkError):
    """Raised when a profile file does not conform to schema or semantics."""


class HandleOwnershipError(DevicelinkError):
    """Raised on double acquire, double release or use after release."""


class InvalidTransitionError(DevicelinkError):
    """Raised when a session state change is not in the transition table."""
