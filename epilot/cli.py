from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import Awaitable, Callable

from . import __version__
from .config import ClientConfig, load_config
from .runtime.api import ChatApiClient, RemoteChatDirectory, build_http_client
from .runtime.conversation import Conversation, ConversationState
from .runtime.decisions import parse_address_list, validate_decision
from .runtime.errors import ConfigError, DecisionValidationError, SessionError, TransportError
from .runtime.history import normalize_history
from .runtime.models import DecisionAction, DraftEmail, InterruptDecision
from .runtime.turn import HttpTurnTransport
from .session import Session, SessionStore
from .ui.console import ThinkingIndicator, TranscriptPrinter, format_draft

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_LOGGED_IN = 2
EXIT_INTERRUPTED = 130

_ACTION_KEYS: dict[str, DecisionAction | None] = {
    "a": DecisionAction.APPROVE,
    "approve": DecisionAction.APPROVE,
    "send": DecisionAction.APPROVE,
    "r": DecisionAction.REJECT,
    "reject": DecisionAction.REJECT,
    "discard": DecisionAction.REJECT,
    "w": DecisionAction.AI_REWRITE,
    "rewrite": DecisionAction.AI_REWRITE,
    "ai_rewrite": DecisionAction.AI_REWRITE,
    "e": DecisionAction.MANUAL_EDIT,
    "edit": DecisionAction.MANUAL_EDIT,
    "manual_edit": DecisionAction.MANUAL_EDIT,
    "c": None,
    "cancel": None,
}


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class _LineReader:
    """
    Terminal input for the chat loop.

    Uses prompt_toolkit on an interactive terminal and plain `input()` otherwise
    (pipes, CI).
    """

    def __init__(self) -> None:
        self._session = None
        try:
            interactive = sys.stdin.isatty() and sys.stdout.isatty()
        except (AttributeError, ValueError):
            interactive = False
        if interactive:
            try:
                from prompt_toolkit import PromptSession
            except ImportError:
                logger.debug("prompt_toolkit unavailable; using basic input()")
            else:
                self._session = PromptSession()

    async def read(self, message: str, *, default: str = "", multiline: bool = False) -> str | None:
        if self._session is not None:
            try:
                return await self._session.prompt_async(message, default=default, multiline=multiline)
            except (EOFError, KeyboardInterrupt):
                return None
        return await asyncio.to_thread(self._read_basic, message, default, multiline)

    @staticmethod
    def _read_basic(message: str, default: str, multiline: bool) -> str | None:
        try:
            if not multiline:
                hint = f" [{default}]" if default else ""
                raw = input(f"{message}{hint} ")
                return raw if raw.strip() else default
            print(f"{message} (end with a single '.' line; empty keeps the current text)")
            lines: list[str] = []
            while True:
                line = input()
                if line == ".":
                    break
                lines.append(line)
            return "\n".join(lines) if lines else default
        except (EOFError, KeyboardInterrupt):
            return None


def _require_session(config: ClientConfig) -> Session:
    session = SessionStore(config.session_path).load()
    if not session.logged_in:
        raise SessionError("Not logged in. Run `epilot login` first.")
    return session


def _employee_id(session: Session) -> str:
    if not session.employee_id:
        raise SessionError("Not logged in. Run `epilot login` first.")
    return session.employee_id


async def _run_turn(conversation: Conversation, op: Awaitable[None]) -> None:
    # Ctrl-C during a turn cancels the exchange instead of killing the loop.
    loop = asyncio.get_running_loop()
    installed = False
    try:
        loop.add_signal_handler(signal.SIGINT, conversation.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        installed = False
    try:
        await op
    except TransportError as e:
        print(f"\nFailed to reach the assistant: {e}", file=sys.stderr)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def _collect_decision(reader: _LineReader, draft: DraftEmail) -> InterruptDecision | None:
    print(format_draft(draft))
    print()
    while True:
        answer = await reader.read(
            "Decision [a]pprove / [r]eject / AI re[w]rite / [e]dit myself / [c]ancel turn:",
        )
        if answer is None:
            return None
        key = answer.strip().lower()
        if key not in _ACTION_KEYS:
            print("Unknown choice.")
            continue
        action = _ACTION_KEYS[key]
        if action is None:
            return None

        if action is DecisionAction.AI_REWRITE:
            instructions = await reader.read("Rewrite instructions:")
            decision = InterruptDecision(action=action, is_html=draft.is_html, instructions=instructions or "")
        elif action is DecisionAction.MANUAL_EDIT:
            to = await reader.read("To (comma separated):", default=", ".join(draft.to))
            cc = await reader.read("CC (comma separated):", default=", ".join(draft.cc or []))
            subject = await reader.read("Subject:", default=draft.subject)
            body = await reader.read("Body:", default=draft.body, multiline=True)
            html = await reader.read("HTML body? (y/n):", default="y" if draft.is_html else "n")
            decision = InterruptDecision(
                action=action,
                is_html=(html or "").strip().lower() in {"y", "yes", "true", "1"},
                to=parse_address_list(to),
                cc=parse_address_list(cc),
                subject=subject or "",
                body=body or "",
            )
        else:
            decision = InterruptDecision(action=action, is_html=draft.is_html)

        try:
            validate_decision(decision)
        except DecisionValidationError as e:
            print(f"{e.field}: {e}")
            continue
        return decision


async def _chat(config: ClientConfig, session: Session, chat_id: str | None) -> int:
    employee_id = _employee_id(session)
    async with build_http_client(config) as http:
        api = ChatApiClient(http)
        printer = TranscriptPrinter()
        indicator = ThinkingIndicator()

        def _on_change(conv: Conversation) -> None:
            indicator.sync(conv)
            printer.update(conv)

        conversation = Conversation(
            transport=HttpTurnTransport(http, user_id=employee_id),
            directory=RemoteChatDirectory(api, employee_id=employee_id),
            conversation_id=chat_id,
            on_change=_on_change,
        )
        if chat_id is not None:
            await conversation.load_history()
            for entry in conversation.transcript:
                printer.render_entry(entry)

        reader = _LineReader()
        print("Type a message. /exit quits.")
        while True:
            if conversation.state is ConversationState.AWAITING_DECISION and conversation.pending_draft is not None:
                decision = await _collect_decision(reader, conversation.pending_draft)
                if decision is None:
                    conversation.cancel()
                    continue
                await _run_turn(conversation, conversation.decide(decision))
                continue

            line = await reader.read("you>")
            if line is None or line.strip() in {"/exit", "/quit"}:
                indicator.stop()
                return EXIT_OK
            if not line.strip():
                continue
            await _run_turn(conversation, conversation.submit(line))
            if conversation.last_error is None and conversation.conversation_id and chat_id is None:
                chat_id = conversation.conversation_id
                logger.info("Chat id: %s", chat_id)


async def _login(config: ClientConfig, email: str | None) -> int:
    reader = _LineReader()
    if not email:
        email = await reader.read("Email:")
    if not email or not email.strip():
        print("Email is required.", file=sys.stderr)
        return EXIT_ERROR
    email = email.strip()
    async with build_http_client(config) as http:
        api = ChatApiClient(http)
        sent = await api.login_with_email(email)
        if sent.detail:
            print(sent.detail, file=sys.stderr)
            return EXIT_ERROR
        if sent.message:
            print(sent.message)
        otp = await reader.read("One-time code:")
        if not otp or not otp.strip():
            print("A one-time code is required.", file=sys.stderr)
            return EXIT_ERROR
        verified = await api.verify_otp(email, otp.strip())
    if not verified.employee_id:
        print(verified.detail or "Verification failed.", file=sys.stderr)
        return EXIT_ERROR
    SessionStore(config.session_path).store(Session(email=verified.email or email, employee_id=verified.employee_id))
    print(f"Logged in as {verified.email or email}.")
    return EXIT_OK


async def _chats_list(config: ClientConfig, session: Session) -> int:
    employee_id = _employee_id(session)
    async with build_http_client(config) as http:
        chats = await ChatApiClient(http).fetch_chat_list(employee_id)
    if not chats:
        print("No chats yet")
        return EXIT_OK
    for chat in chats:
        print(f"{chat.chat_id}\t{chat.created_at}\t{chat.title}")
    return EXIT_OK


async def _chats_new(config: ClientConfig, session: Session) -> int:
    employee_id = _employee_id(session)
    async with build_http_client(config) as http:
        created = await ChatApiClient(http).create_chat(employee_id)
    print(created.chat_id)
    return EXIT_OK


async def _chats_delete(config: ClientConfig, session: Session, chat_id: str) -> int:
    employee_id = _employee_id(session)
    async with build_http_client(config) as http:
        await ChatApiClient(http).delete_chat(employee_id, chat_id)
    print(f"Deleted chat {chat_id}.")
    return EXIT_OK


async def _history(config: ClientConfig, session: Session, chat_id: str) -> int:
    employee_id = _employee_id(session)
    async with build_http_client(config) as http:
        entries = await ChatApiClient(http).fetch_chat_history(employee_id, chat_id)
    printer = TranscriptPrinter()
    for entry in normalize_history(entries):
        printer.render_entry(entry)
    return EXIT_OK


async def _connect_email(config: ClientConfig, session: Session) -> int:
    employee_id = _employee_id(session)
    async with build_http_client(config) as http:
        url = await ChatApiClient(http).google_auth_url(employee_id)
    if not url:
        print("Unable to start email authentication.", file=sys.stderr)
        return EXIT_ERROR
    print(url)
    return EXIT_OK


def _with_session(
    fn: Callable[..., Awaitable[int]],
) -> Callable[[argparse.Namespace, ClientConfig], Awaitable[int]]:
    async def _run(args: argparse.Namespace, config: ClientConfig) -> int:
        session = _require_session(config)
        extra = [getattr(args, name) for name in getattr(args, "positional", ())]
        return await fn(config, session, *extra)

    return _run


async def _cmd_login(args: argparse.Namespace, config: ClientConfig) -> int:
    return await _login(config, args.email)


async def _cmd_logout(_: argparse.Namespace, config: ClientConfig) -> int:
    SessionStore(config.session_path).clear()
    print("Logged out.")
    return EXIT_OK


async def _cmd_whoami(_: argparse.Namespace, config: ClientConfig) -> int:
    session = _require_session(config)
    print(f"{session.email or '-'}\t{session.employee_id}")
    return EXIT_OK


async def _cmd_chat(args: argparse.Namespace, config: ClientConfig) -> int:
    session = _require_session(config)
    return await _chat(config, session, args.chat_id)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="epilot",
        description="Terminal client for the E-pilot email assistant.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--base-url", default=None, help="Backend URL (default: EPILOT_BASE_URL or config.json).")
    parser.add_argument("--data-dir", default=None, help="Directory for session and config (default: ~/.epilot).")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level for stderr diagnostics.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser("login", help="Log in with an email one-time code.")
    login_parser.add_argument("--email", default=None, help="Account email (prompted if omitted).")
    login_parser.set_defaults(func=_cmd_login)

    subparsers.add_parser("logout", help="Forget the stored session.").set_defaults(func=_cmd_logout)
    subparsers.add_parser("whoami", help="Show the stored session.").set_defaults(func=_cmd_whoami)

    chat_parser = subparsers.add_parser("chat", help="Start an interactive conversation.")
    chat_parser.add_argument("--chat-id", default=None, help="Continue an existing chat (default: new chat).")
    chat_parser.set_defaults(func=_cmd_chat)

    chats_parser = subparsers.add_parser("chats", help="Manage chats.")
    chats_sub = chats_parser.add_subparsers(dest="chats_command", required=True)
    chats_sub.add_parser("list", help="List chats.").set_defaults(func=_with_session(_chats_list))
    chats_sub.add_parser("new", help="Create an empty chat.").set_defaults(func=_with_session(_chats_new))
    delete_parser = chats_sub.add_parser("delete", help="Delete a chat and its history.")
    delete_parser.add_argument("chat_id", help="Chat ID to delete.")
    delete_parser.set_defaults(func=_with_session(_chats_delete), positional=("chat_id",))

    history_parser = subparsers.add_parser("history", help="Print a chat transcript.")
    history_parser.add_argument("chat_id", help="Chat ID to print.")
    history_parser.set_defaults(func=_with_session(_history), positional=("chat_id",))

    subparsers.add_parser("connect-email", help="Print the Google authorization URL.").set_defaults(
        func=_with_session(_connect_email)
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)

    try:
        config = load_config(data_dir=args.data_dir, base_url=args.base_url)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    try:
        return int(asyncio.run(args.func(args, config)))
    except SessionError as e:
        print(str(e), file=sys.stderr)
        return EXIT_NOT_LOGGED_IN
    except TransportError as e:
        print(f"Request failed ({e.code.value}): {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    raise SystemExit(main())
