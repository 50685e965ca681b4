# matchlink/cli/args.py
from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional

DEFAULT_CONFIG = "matchlink.yml"
LOG_PATH = Path("logs") / "matchlink.log"

MODE_CHOICES = ("auto", "local", "lobby")


def _positive_float(v: str) -> float:
    try:
        f = float(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid number '{v}'") from None
    if f <= 0:
        raise argparse.ArgumentTypeError(f"Expected a positive number, got {v}")
    return f


def _port(v: str) -> int:
    try:
        p = int(v)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid port '{v}'") from None
    if not 0 <= p <= 65535:
        raise argparse.ArgumentTypeError(f"Port out of range: {p}")
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="matchlink")
    parser.add_argument(
        "--config",
        default=None,
        help=f"YAML config file (default: ./{DEFAULT_CONFIG} if present, else built-in defaults).",
    )
    parser.add_argument("--mode", choices=MODE_CHOICES, default=None, help="Override the configured session mode.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log to the console at DEBUG level.")
    parser.add_argument("--log-file", type=Path, default=LOG_PATH, help="Application log file.")

    sub = parser.add_subparsers(dest="cmd", required=True)

    sub.add_parser("transports", help="List registered transport backends.")

    pb = sub.add_parser("browse", help="Discover sessions for a while and print them.")
    pb.add_argument("--secs", type=_positive_float, default=5.0)
    pb.add_argument(
        "--placeholder",
        action="store_true",
        help="Print an example row when nothing was found.",
    )

    ph = sub.add_parser("host", help="Host a session until interrupted (or --secs).")
    ph.add_argument("--secs", type=_positive_float, default=None)
    ph.add_argument("--name", default=None, help="Display name advertised to browsers.")
    ph.add_argument("--port", type=_port, default=None)

    pj = sub.add_parser("join", help="Join a session by address.")
    pj.add_argument("--address", required=True)
    pj.add_argument("--port", type=_port, default=None)
    pj.add_argument("--secs", type=_positive_float, default=None, help="Stay connected this long (default: until interrupted).")

    return parser


def resolve_config_path(arg: Optional[str]) -> Optional[str]:
    if arg:
        return arg
    if Path(DEFAULT_CONFIG).exists():
        return DEFAULT_CONFIG
    return None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    args = build_parser().parse_args(argv)
    args.config = resolve_config_path(args.config)
    return args
