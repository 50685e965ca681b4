# matchlink/app/config.py
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from matchlink.model.settings import Settings


@dataclass(frozen=True)
class MatchLinkConfig:
    """Where to load settings from, plus per-run overrides (CLI flags)."""
    config_path: Optional[str] = None
    mode: Optional[str] = None
    display_name: Optional[str] = None
    port: Optional[int] = None
    load_plugins: bool = False

    def apply(self, settings: Settings) -> Settings:
        session = settings.session
        if self.display_name is not None:
            session = replace(session, display_name=self.display_name)
        if self.port is not None:
            session = replace(session, port=int(self.port))

        return replace(
            settings,
            mode=self.mode if self.mode is not None else settings.mode,
            session=session,
        )
