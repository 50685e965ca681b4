from __future__ import annotations

from pathlib import Path

import pytest

from matchlink.cli.args import parse_args
from matchlink.cli.commands import placeholder_record, print_sessions
import matchlink.cli.main as main_mod
from matchlink.cli.main import main


def test_parse_args_defaults_without_local_config(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    args = parse_args(["browse"])

    assert args.cmd == "browse"
    assert args.config is None
    assert args.secs == 5.0
    assert args.placeholder is False


def test_parse_args_picks_up_local_config(tmp_path: Path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "matchlink.yml").write_text("mode: local\n", encoding="utf-8")

    assert parse_args(["transports"]).config == "matchlink.yml"


@pytest.mark.parametrize("argv", [["host", "--port", "70000"], ["browse", "--secs", "0"], ["join"]])
def test_parse_args_rejects_bad_values(argv):
    with pytest.raises(SystemExit):
        parse_args(argv)


def test_main_transports_lists_tcp(tmp_path: Path, capsys, monkeypatch):
    monkeypatch.setattr(main_mod, "configure_console_logging", lambda verbose: None)
    cfg = tmp_path / "matchlink.yml"
    cfg.write_text("transports:\n  preference: [tcp]\n  fallback: tcp\n", encoding="utf-8")

    rc = main(["--config", str(cfg), "--log-file", str(tmp_path / "logs" / "app.log"), "transports"])

    out = capsys.readouterr().out
    assert rc == 0
    assert "tcp (available=yes)" in out
    assert "Preference: ['tcp']" in out


def test_main_reports_config_errors(tmp_path: Path, capsys, monkeypatch):
    monkeypatch.setattr(main_mod, "configure_console_logging", lambda verbose: None)
    rc = main(["--config", str(tmp_path / "missing.yml"), "transports"])

    out = capsys.readouterr().out
    assert rc == 1
    assert out.startswith("ERROR: Failed to load configuration.")
    assert "Hint:" in out


def test_print_sessions_placeholder(capsys):
    print_sessions([], placeholder=placeholder_record(7777))
    out = capsys.readouterr().out
    assert "Example Session (test row)" in out
    assert "tcp4://127.0.0.1:7777" in out

    print_sessions([])
    assert "(none)" in capsys.readouterr().out
