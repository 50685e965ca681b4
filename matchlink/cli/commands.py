# matchlink/cli/commands.py
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import List, Optional

from matchlink.app.config import MatchLinkConfig
from matchlink.app.runner import AppRun, start_run
from matchlink.core.result import OpResult
from matchlink.model.session import DiscoverySource, Endpoint, SessionRecord
from matchlink.runtime.state import ConnectionState

# ---------------- Logging ----------------

def configure_file_logging(app_log_path: Path) -> None:
    """
    Add a file handler to the root logger (idempotent).
    Kept in CLI (presentation-layer concern).
    """
    root = logging.getLogger()
    app_log_path.parent.mkdir(parents=True, exist_ok=True)
    target = str(app_log_path.resolve())

    for h in root.handlers:
        if isinstance(h, logging.FileHandler) and getattr(h, "baseFilename", None) == target:
            return

    fh = logging.FileHandler(app_log_path, encoding="utf-8", delay=True)
    fh.setLevel(logging.INFO)
    fh.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root.addHandler(fh)

    if root.level > logging.INFO:
        root.setLevel(logging.INFO)


def configure_console_logging(verbose: bool) -> None:
    root = logging.getLogger()
    for h in root.handlers:
        if getattr(h, "_matchlink_console", False):
            return

    sh = logging.StreamHandler()
    sh.setLevel(logging.DEBUG if verbose else logging.WARNING)
    sh.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    sh._matchlink_console = True  # type: ignore[attr-defined]
    root.addHandler(sh)

    if verbose:
        root.setLevel(logging.DEBUG)

# ---------------- Printing ----------------

def placeholder_record(port: int) -> SessionRecord:
    """Example row shown by `browse --placeholder`; never stored in the registry."""
    return SessionRecord(
        session_id=0,
        source=DiscoverySource.BROADCAST,
        descriptor=Endpoint("127.0.0.1", port),
        last_seen=0.0,
        display_name="Example Session (test row)",
    )


def print_sessions(records: List[SessionRecord], *, placeholder: Optional[SessionRecord] = None) -> None:
    if not records and placeholder is not None:
        records = [placeholder]
    if not records:
        print("Sessions:  (none)")
        return

    print("Sessions:")
    for r in records:
        print(f"  - id={r.session_id} source={r.source.value} name={r.label()} uri={r.descriptor.to_uri()}")


def print_failure(res: OpResult) -> None:
    err = res.error
    if err is None:
        return
    print(f"ERROR: {err.message}")
    if err.hint:
        print(f"Hint: {err.hint}")


def _wait(secs: Optional[float], *, until=None) -> None:
    t0 = time.time()
    while secs is None or time.time() - t0 < secs:
        if until is not None and until():
            return
        time.sleep(0.2)

# ---------------- Commands ----------------

def _start_app_run(args, **overrides) -> AppRun:
    cfg = MatchLinkConfig(config_path=args.config, mode=args.mode, load_plugins=True, **overrides)
    run = start_run(cfg)
    configure_file_logging(args.log_file)
    return run


def cmd_transports(args) -> int:
    run = _start_app_run(args)
    backends = run.context.backends.backends()

    print("Registered transports:\n")
    for b in backends:
        avail = "yes" if b.is_available() else "no"
        print(f"{b.name} (available={avail})")
        print(f"  tags: {', '.join(sorted(b.tags)) or '-'}")
    if not backends:
        print("(none)")

    pref = run.context.settings.transports
    print()
    print(f"Preference: {list(pref.preference)}  fallback: {pref.fallback or '-'}")
    return 0


def cmd_browse(args) -> int:
    run = _start_app_run(args)
    ctrl = run.controller

    def _on_change(snapshot: List[SessionRecord]) -> None:
        print(f"UPDATE: {len(snapshot)} session(s)")

    unsubscribe = ctrl.registry.subscribe(_on_change)
    try:
        with ctrl:
            print(f"Browsing ({ctrl.resolve_mode().value}) for {args.secs:g}s...")
            _wait(args.secs)
            placeholder = placeholder_record(run.context.settings.session.port) if args.placeholder else None
            print_sessions(ctrl.snapshot(), placeholder=placeholder)
        return 0
    finally:
        unsubscribe()


def cmd_host(args) -> int:
    run = _start_app_run(args, display_name=args.name, port=args.port)
    ctrl = run.controller

    with ctrl:
        res = ctrl.host()
        if not res.ok:
            print_failure(res)
            return 1

        st = ctrl.status()
        print(f"HOSTING: mode={st.mode.value if st.mode else '-'} backend={st.backend} target={st.target}")
        lobby = ctrl.lobby.handle
        if lobby is not None and lobby.valid:
            print(f"Lobby:     id={lobby.lobby_id}")

        try:
            _wait(args.secs, until=lambda: ctrl.status().state is not ConnectionState.HOSTING)
        except KeyboardInterrupt:
            pass

        ctrl.stop_session()
        print("STOPPED")
        return 0


def cmd_join(args) -> int:
    run = _start_app_run(args)
    ctrl = run.controller
    timeout = run.context.settings.transports.connect_timeout_s + 1.0

    with ctrl:
        res = ctrl.join_address(args.address, args.port)
        if not res.ok:
            print_failure(res)
            return 1

        _wait(timeout, until=lambda: ctrl.status().state is not ConnectionState.CONNECTING)
        st = ctrl.status()
        if st.state is not ConnectionState.CONNECTED:
            print(f"ERROR: Could not connect to {st.target or args.address}.")
            if st.last_error:
                print(f"Hint: {st.last_error}")
            ctrl.stop_session()
            return 1

        print(f"CONNECTED: {st.target} via {st.backend}")
        try:
            _wait(args.secs, until=lambda: ctrl.status().state is not ConnectionState.CONNECTED)
        except KeyboardInterrupt:
            pass

        ctrl.stop_session()
        print("DISCONNECTED")
        return 0
