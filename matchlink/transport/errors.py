# matchlink/transport/errors.py
from __future__ import annotations


class TransportError(Exception):
    """Base class for transport-backend failures."""


class TransportOpenError(TransportError):
    """Socket could not be bound, listened on or connected."""


class TransportIOError(TransportError):
    """Send/receive failed on an already-open socket."""


class DescriptorNotSupported(TransportError):
    """Backend was handed a connect descriptor family it cannot resolve."""
