# matchlink/app/runner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from matchlink.app.config import MatchLinkConfig
from matchlink.app.controller import MatchLinkController
from matchlink.core.context import Context
from matchlink.discovery.broadcast import InterfaceLister
from matchlink.interfaces.lobby_service import LobbyService
from matchlink.runtime.connection import TemplateCheck
from matchlink.transport.registry import TransportBackendRegistry


@dataclass(frozen=True)
class AppRun:
    controller: MatchLinkController
    context: Context
    config: MatchLinkConfig


def start_run(
    cfg: MatchLinkConfig,
    *,
    context: Optional[Context] = None,
    backends: Optional[TransportBackendRegistry] = None,
    lobby_service: Optional[LobbyService] = None,
    template_check: Optional[TemplateCheck] = None,
    interfaces: Optional[InterfaceLister] = None,
) -> AppRun:
    """
    Build a controller for one run. Nothing starts until controller.start().
    """
    log = logging.getLogger(__name__)

    context = context or Context.load(
        cfg.config_path,
        backends=backends,
        lobby_service=lobby_service,
        load_plugins=cfg.load_plugins,
        adjust=cfg.apply,
    )
    log.info(
        "RUN_CONTEXT app=%s mode=%s backends=%s config_hash=%s",
        context.settings.app_name,
        context.settings.mode,
        ",".join(b.name for b in context.backends.backends()),
        context.config_hash or "-",
    )

    controller = MatchLinkController(
        cfg,
        context=context,
        template_check=template_check,
        interfaces=interfaces,
        logger=log,
    )
    return AppRun(controller=controller, context=context, config=cfg)
