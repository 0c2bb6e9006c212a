import argparse
import logging
import os
import shutil
import sys
from typing import Any, Dict, List, Optional

if __package__ is None and __name__ == "__main__":
    sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from rich.console import Console
from rich.markup import escape

from asc import __version__
from asc import conversation as store
from asc.config_loader import DEFAULT_CONFIG, as_argv, ensure_dirs, get_log_path, get_share_dir, load_config
from asc.errors import AscError
from asc.file_utils import edit_text
from asc.log_utils import setup_logger
from asc.session import append_to_conversation, edit_and_resend, start_new_conversation
from asc.view import run_view

DESCRIPTION = """ASC (AI Shell Chat) is a command-line tool for interacting with AI.
Answers are streamed through a markdown renderer and every exchange is saved
for later browsing."""

EPILOG = """examples:
  asc new "What's the weather like?"
  asc n "Tell me about Go"
  asc append "Can you explain more about that?"
  asc edit "Let me rephrase that"
  asc view
  asc context set "I work mostly in Python"
"""

_console = Console(stderr=True)


def _provider(args: argparse.Namespace) -> str:
    return "perplexity" if getattr(args, "perplexity", False) else "sgpt"


def required_commands(cfg: Dict[str, Any], args: argparse.Namespace) -> List[str]:
    if args.command in ("version", "context"):
        return []
    # view resends edited messages through the default query command
    key = "perplexity_command" if _provider(args) == "perplexity" else "query_command"
    needed = [as_argv(cfg.get(key) or DEFAULT_CONFIG[key])[0]]
    if str(cfg.get("renderer") or "glow").lower() == "glow" or args.command == "view":
        needed.append(as_argv(cfg.get("renderer_command") or "glow")[0])
    return needed


def check_required_commands(cfg: Dict[str, Any], args: argparse.Namespace, logger: logging.Logger) -> bool:
    for name in required_commands(cfg, args):
        if shutil.which(name) is None:
            logger.error("required command not found: %s", name)
            _console.print(f"[red]error:[/red] required command not found: {name}")
            return False
    return True


def cmd_version(cfg, args, logger) -> int:
    print(f"ASC version {__version__}")
    return 0


def cmd_new(cfg, args, logger) -> int:
    message = " ".join(args.message).strip()
    if not message:
        logger.error("message is required")
        _console.print("[red]error:[/red] message is required")
        return 1
    logger.debug("starting new conversation: %s", message)
    start_new_conversation(message, cfg, provider=_provider(args), logger=logger)
    return 0


def cmd_append(cfg, args, logger) -> int:
    message = " ".join(args.message).strip()
    if not message:
        _console.print("[red]error:[/red] message is required")
        return 1
    append_to_conversation(message, cfg, conversation_id=args.id, provider=_provider(args), logger=logger)
    return 0


def cmd_edit(cfg, args, logger) -> int:
    message = " ".join(args.message).strip() or None
    conv = edit_and_resend(cfg, message=message, conversation_id=args.id, provider=_provider(args), logger=logger)
    if conv is None:
        _console.print("Edit aborted: empty message.")
    return 0


def cmd_view(cfg, args, logger) -> int:
    edited = run_view(cfg, logger=logger)
    if edited:
        start_new_conversation(edited.strip(), cfg, logger=logger)
    return 0


def cmd_context(cfg, args, logger) -> int:
    share_dir = get_share_dir(cfg)
    if args.action == "show":
        text = store.load_context(share_dir)
        print(text if text else "(no context set)")
    elif args.action == "set":
        text = " ".join(args.text).strip()
        if not text and not sys.stdin.isatty():
            text = sys.stdin.read().strip()
        if not text:
            _console.print("[red]error:[/red] context text is required")
            return 1
        path = store.save_context(text, share_dir)
        logger.info("context saved to %s", path)
    elif args.action == "edit":
        text = edit_text(store.load_context(share_dir)).strip()
        if text:
            store.save_context(text, share_dir)
        else:
            store.clear_context(share_dir)
    elif args.action == "clear":
        store.clear_context(share_dir)
        logger.info("context cleared")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="asc",
        description=DESCRIPTION,
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable debug mode")
    sub = parser.add_subparsers(dest="command", required=False)

    p_version = sub.add_parser("version", help="Show version information")
    p_version.set_defaults(func=cmd_version)

    p_new = sub.add_parser("new", aliases=["n"], help="Start a new conversation with AI")
    p_new.add_argument("message", nargs="*", help="Message to send")
    p_new.add_argument("-p", "--perplexity", action="store_true", help="Ask perplexity instead of sgpt")
    p_new.set_defaults(func=cmd_new, command="new")

    p_append = sub.add_parser("append", aliases=["a"], help="Continue a previous conversation")
    p_append.add_argument("message", nargs="*", help="Follow-up message")
    p_append.add_argument("--id", default=None, help="Conversation id (default: most recent)")
    p_append.add_argument("-p", "--perplexity", action="store_true", help="Ask perplexity instead of sgpt")
    p_append.set_defaults(func=cmd_append, command="append")

    p_edit = sub.add_parser("edit", aliases=["e"], help="Edit and resend a previous message")
    p_edit.add_argument("message", nargs="*", help="Replacement message (default: open $EDITOR)")
    p_edit.add_argument("--id", default=None, help="Conversation id (default: most recent)")
    p_edit.add_argument("-p", "--perplexity", action="store_true", help="Ask perplexity instead of sgpt")
    p_edit.set_defaults(func=cmd_edit, command="edit")

    p_view = sub.add_parser("view", aliases=["v"], help="Browse conversation history")
    p_view.set_defaults(func=cmd_view, command="view")

    p_ctx = sub.add_parser("context", help="Manage the context prepended to new questions")
    p_ctx.add_argument("action", choices=["show", "set", "edit", "clear"], help="Action to perform")
    p_ctx.add_argument("text", nargs="*", help="Context text for 'set' (or pipe it on stdin)")
    p_ctx.set_defaults(func=cmd_context)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    cfg = load_config()
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    args = parser.parse_args(argv)
    if not getattr(args, "command", None):
        parser.print_help()
        return 0
    logger = setup_logger(
        get_log_path(cfg),
        level=logging.DEBUG if args.debug else logging.INFO,
        to_stderr=args.debug or args.verbose,
    )
    if args.command != "version":
        if not check_required_commands(cfg, args, logger):
            return 1
        try:
            ensure_dirs(cfg)
        except OSError as exc:
            logger.error("failed to ensure share directory: %s", exc)
            _console.print(f"[red]error:[/red] failed to ensure share directory: {escape(str(exc))}")
            return 1
    try:
        logger.debug("cli_command %s", args.command)
        return args.func(cfg, args, logger)
    except AscError as e:
        logger.error("cli_error %s: %s", args.command, e)
        _console.print(f"[red]error:[/red] {escape(str(e))}", highlight=False)
        return 1
    except KeyboardInterrupt:
        logger.info("cli_interrupted %s", args.command)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
