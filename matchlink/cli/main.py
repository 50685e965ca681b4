# matchlink/cli/main.py
from __future__ import annotations

from typing import Optional

from matchlink.core.errors import MatchLinkError

from matchlink.cli.args import parse_args
from matchlink.cli.commands import (
    cmd_browse,
    cmd_host,
    cmd_join,
    cmd_transports,
    configure_console_logging,
)


def main(argv: Optional[list[str]] = None) -> int:
    try:
        args = parse_args(argv)
        configure_console_logging(args.verbose)

        if args.cmd == "transports":
            return cmd_transports(args)
        if args.cmd == "browse":
            return cmd_browse(args)
        if args.cmd == "host":
            return cmd_host(args)
        if args.cmd == "join":
            return cmd_join(args)

        return 2
    except MatchLinkError as e:
        print(f"ERROR: {e.message}")
        if e.hint:
            print(f"Hint: {e.hint}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
