"""Error taxonomy shared by the codec, the backends and the driver."""
from __future__ import annotations


class KvdnsError(Exception):
    """Base class for every error raised by kvdns."""


class NotFoundError(KvdnsError):
    """A backend key holds no value.

    Lookups turn this into an empty answer; it never leaves `Backend.lookup`.
    """


class TransientError(KvdnsError):
    """The backend is temporarily unavailable; the same call may be retried."""


class FatalError(KvdnsError):
    """The operation cannot succeed as issued and must not be retried."""


class UnsupportedTypeError(FatalError):
    """The record type is not one of the types this server stores."""


class CorruptRecordError(FatalError):
    """A value read back from a backend does not decode."""
