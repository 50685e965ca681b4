# matchlink/core/context.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import yaml

from matchlink.core.errors import ConfigError
from matchlink.interfaces.lobby_service import LobbyService
from matchlink.model.loader import ConfigLoader
from matchlink.model.settings import Settings
from matchlink.transport.arbitrator import TransportArbitrator
from matchlink.transport.registry import TransportBackendRegistry
from matchlink.utils.hashing import handshake_tag


@dataclass(frozen=True)
class Context:
    """
    Everything one MatchLink instance shares, passed explicitly.

    Holds the single active-transport slot (via the arbitrator); two contexts
    never see each other's state, so tests can run many side by side.
    """
    settings: Settings
    config_hash: Optional[str]
    handshake: int
    backends: TransportBackendRegistry
    arbitrator: TransportArbitrator
    lobby_service: Optional[LobbyService] = None

    @classmethod
    def load(
        cls,
        config_path: str | Path | None = None,
        *,
        backends: Optional[TransportBackendRegistry] = None,
        lobby_service: Optional[LobbyService] = None,
        load_plugins: bool = False,
        adjust: Optional[Callable[[Settings], Settings]] = None,
    ) -> "Context":
        """
        Load configuration and build the transport registry + arbitrator.

        `backends` is injectable to support testing and custom registries.
        If not provided, the default registry (TCP only) is used, plus
        entry-point plugins when `load_plugins` is set.
        `adjust` rewrites the loaded settings (CLI overrides).
        """
        loader = ConfigLoader(config_path)
        try:
            settings = loader.load()
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(
                "Failed to load configuration.",
                hint=str(e),
                details={"config_path": str(config_path)},
            ) from None
        except Exception as e:
            raise ConfigError(
                "Unexpected error while loading configuration.",
                hint=str(e),
                details={"config_path": str(config_path)},
            ) from None

        if adjust is not None:
            settings = adjust(settings)

        if backends is None:
            backends = TransportBackendRegistry.default(connect_timeout=settings.transports.connect_timeout_s)
            if load_plugins:
                backends.load_entry_points()

        return cls.from_settings(
            settings,
            backends=backends,
            lobby_service=lobby_service,
            config_hash=loader.file_hash,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backends: Optional[TransportBackendRegistry] = None,
        lobby_service: Optional[LobbyService] = None,
        config_hash: Optional[str] = None,
    ) -> "Context":
        if backends is None:
            backends = TransportBackendRegistry.default(connect_timeout=settings.transports.connect_timeout_s)

        arbitrator = TransportArbitrator(
            backends,
            preference=settings.transports.preference,
            fallback=settings.transports.fallback,
        )
        return cls(
            settings=settings,
            config_hash=config_hash,
            handshake=handshake_tag(settings.app_name),
            backends=backends,
            arbitrator=arbitrator,
            lobby_service=lobby_service,
        )
