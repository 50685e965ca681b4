# matchlink/core/errors.py
from __future__ import annotations


class MatchLinkError(Exception):
    """
    Base class for all expected operational errors in MatchLink.
    """

    #: Stable machine-readable identifier (for CLI exit mapping, UI messages, etc.)
    code: str = "unknown"

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Configuration / setup errors (no network access yet)
# ---------------------------------------------------------------------------

class ConfigError(MatchLinkError):
    """
    Configuration file is missing, malformed or inconsistent.

    Examples:
      - unknown session mode
      - stale timeout shorter than a few prune intervals
      - preference list names an empty backend key
    """
    code = "config_error"


# ---------------------------------------------------------------------------
# Transport arbitration / connection lifecycle errors
# ---------------------------------------------------------------------------

class TransportUnavailable(MatchLinkError):
    """
    No registered backend can serve the requested session mode.

    Examples:
      - lobby mode requested but no lobby-token backend is registered
      - local mode with an empty preference list and no fallback
    """
    code = "transport_unavailable"


class InvalidStateTransition(MatchLinkError):
    """
    Operation attempted from a connection state that does not allow it.

    Examples:
      - host() while already hosting
      - join() while a previous join is still connecting
      - transport re-selection while connected
    """
    code = "invalid_state_transition"


class SessionTemplateMissing(MatchLinkError):
    """
    Hosting refused because the presentation layer reports no session/player template.
    """
    code = "session_template_missing"


class HostStartError(MatchLinkError):
    """
    Selected backend could not start listening.

    Examples:
      - port already in use
      - permission denied on bind
    """
    code = "host_start_error"


class ConnectError(MatchLinkError):
    """
    Backend reported that a connect attempt failed.
    """
    code = "connect_error"


# ---------------------------------------------------------------------------
# Optional subsystems (logged; surfaced only by lobby-only operations)
# ---------------------------------------------------------------------------

class LobbyServiceUnavailable(MatchLinkError):
    """
    External lobby service is not running, not reachable or rejected a request.
    Hosting proceeds without an external advertisement.
    """
    code = "lobby_service_unavailable"


class DiscoveryProbeFailed(MatchLinkError):
    """
    A single broadcast probe could not be sent. The next probe proceeds unaffected.
    """
    code = "discovery_probe_failed"
