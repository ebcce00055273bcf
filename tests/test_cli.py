from __future__ import annotations

from pathlib import Path

import pytest

from epilot import cli
from epilot.session import Session, SessionStore


def test_parser_wires_subcommands() -> None:
    parser = cli._build_parser()
    args = parser.parse_args(["--base-url", "http://x", "history", "c1"])
    assert args.base_url == "http://x"
    assert args.chat_id == "c1"
    assert args.positional == ("chat_id",)

    args = parser.parse_args(["chat", "--chat-id", "c2"])
    assert args.chat_id == "c2"

    with pytest.raises(SystemExit):
        parser.parse_args(["chats"])


def test_whoami_without_session_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    code = cli.main(["--data-dir", str(tmp_path), "whoami"])
    assert code == cli.EXIT_NOT_LOGGED_IN
    assert "Not logged in" in capsys.readouterr().err


def test_commands_needing_a_session_exit_2(tmp_path: Path) -> None:
    assert cli.main(["--data-dir", str(tmp_path), "chats", "list"]) == cli.EXIT_NOT_LOGGED_IN
    assert cli.main(["--data-dir", str(tmp_path), "history", "c1"]) == cli.EXIT_NOT_LOGGED_IN


def test_whoami_and_logout(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    SessionStore(tmp_path / "session.json").store(Session(email="me@corp.com", employee_id="emp-1"))

    assert cli.main(["--data-dir", str(tmp_path), "whoami"]) == cli.EXIT_OK
    assert "me@corp.com\temp-1" in capsys.readouterr().out

    assert cli.main(["--data-dir", str(tmp_path), "logout"]) == cli.EXIT_OK
    assert not (tmp_path / "session.json").exists()
    assert cli.main(["--data-dir", str(tmp_path), "whoami"]) == cli.EXIT_NOT_LOGGED_IN


def test_bad_config_exits_1(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("[]", encoding="utf-8")
    assert cli.main(["--data-dir", str(tmp_path), "whoami"]) == cli.EXIT_ERROR


def test_transport_failure_exits_1(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    SessionStore(tmp_path / "session.json").store(Session(email="me@corp.com", employee_id="emp-1"))
    monkeypatch.delenv("EPILOT_BASE_URL", raising=False)
    # Port 9 (discard) is closed on test hosts, so the connection is refused.
    code = cli.main(["--data-dir", str(tmp_path), "--base-url", "http://127.0.0.1:9", "chats", "list"])
    assert code == cli.EXIT_ERROR
