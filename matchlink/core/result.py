# matchlink/core/result.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from matchlink.core.errors import MatchLinkError


@dataclass(frozen=True, slots=True)
class OpResult:
    """
    Outcome of a public lifecycle operation (host/join/stop/refresh).

    Public operations never raise expected errors; callers inspect `ok` and,
    on failure, the attached `MatchLinkError`.
    """
    ok: bool
    error: Optional[MatchLinkError] = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "OpResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: MatchLinkError) -> "OpResult":
        return cls(ok=False, error=error)

    @property
    def code(self) -> str:
        if self.ok:
            return "ok"
        return self.error.code if self.error is not None else "unknown"

    def __bool__(self) -> bool:
        return self.ok
