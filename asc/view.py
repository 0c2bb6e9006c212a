import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich import box

from asc import conversation as store
from asc.config_loader import as_argv, get_data_dir, get_style_path
from asc.errors import AscError, PersistenceError
from asc.file_utils import edit_text, remove_quietly, write_temp_file
from asc.log_utils import get_logger
from asc.renderer import terminal_width
from asc.schemas import Conversation

ID_WIDTH = 14  # 20250706023320
DATE_WIDTH = 19  # 2025-07-06 02:33:20
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
TABLE_HEIGHT = 15

THEME = {
    "panel": "grey50",
    "header": "bright_cyan",
    "selected": "color(229) on color(57)",
}

HELP_TEXT = (
    "Keybindings:\n"
    "  v: View conversation with glow\n"
    "  V: View conversation with less\n"
    "  e: Edit conversation\n"
    "  d: Delete conversation\n"
    "  q: Quit"
)


def calculate_column_widths(width: int) -> Tuple[int, int, int]:
    # table borders and cell padding
    available = width - 8
    message_width = max(10, available - ID_WIDTH - DATE_WIDTH)
    return ID_WIDTH, DATE_WIDTH, message_width


def truncate_string(s: str, max_len: int) -> str:
    s = " ".join((s or "").split())
    if len(s) <= max_len:
        return s
    if max_len <= 3:
        return s[:max_len]
    return s[: max_len - 3] + "..."


def build_rows(conversations: List[Conversation], width: int) -> List[Tuple[str, str, str]]:
    id_w, date_w, msg_w = calculate_column_widths(width)
    return [
        (
            truncate_string(c.id, id_w),
            truncate_string(c.timestamp.strftime(DATE_FORMAT), date_w),
            truncate_string(c.message, msg_w),
        )
        for c in conversations
    ]


def _clamp_selection(selected: int, items: List[object]) -> int:
    if not items:
        return 0
    return max(0, min(selected, len(items) - 1))


@dataclass
class BrowserState:
    conversations: List[Conversation]
    selected: int = 0
    offset: int = 0
    confirm_id: Optional[str] = None
    height: int = TABLE_HEIGHT

    @property
    def current(self) -> Optional[Conversation]:
        if not self.conversations:
            return None
        return self.conversations[_clamp_selection(self.selected, self.conversations)]

    def move(self, delta: int) -> None:
        self.selected = _clamp_selection(self.selected + delta, self.conversations)
        if self.selected < self.offset:
            self.offset = self.selected
        elif self.selected >= self.offset + self.height:
            self.offset = self.selected - self.height + 1

    def remove(self, conv_id: str) -> None:
        self.conversations = [c for c in self.conversations if c.id != conv_id]
        self.selected = _clamp_selection(self.selected, self.conversations)
        self.offset = min(self.offset, max(0, len(self.conversations) - self.height))

    def visible(self) -> List[Tuple[int, Conversation]]:
        window = self.conversations[self.offset:self.offset + self.height]
        return list(enumerate(window, self.offset))

    def handle_key(self, key: str) -> Optional[str]:
        """Applies ``key`` and returns the action the caller must perform, if any."""
        if self.confirm_id is not None:
            if key in ("ENTER", "v"):
                return "delete"
            if key in ("ESC", "q", "n"):
                self.confirm_id = None
            return None
        if key in ("ESC", "q"):
            return "quit"
        if key in ("j", "DOWN"):
            self.move(1)
        elif key in ("k", "UP"):
            self.move(-1)
        elif key in ("g", "HOME"):
            self.move(-len(self.conversations))
        elif key in ("G", "END"):
            self.move(len(self.conversations))
        elif self.current is None:
            return None
        elif key in ("ENTER", "v"):
            return "glow"
        elif key == "V":
            return "pager"
        elif key == "e":
            return "edit"
        elif key == "d":
            self.confirm_id = self.current.id
        return None


def _get_key() -> str:
    if os.name == "nt":
        import msvcrt
        ch = msvcrt.getch()
        if ch in (b"\x00", b"\xe0"):
            nxt = msvcrt.getch()
            arrows = {b"H": "UP", b"P": "DOWN", b"G": "HOME", b"O": "END"}
            return arrows.get(nxt, "")
        if ch == b"\r":
            return "ENTER"
        if ch == b"\x1b":
            return "ESC"
        try:
            return ch.decode("utf-8")
        except UnicodeDecodeError:
            return ""
    import select
    import termios
    import tty
    fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        # unbuffered reads so select() sees the rest of an escape sequence
        ch = os.read(fd, 1)
        if ch == b"\x1b":
            seq = b""
            while len(seq) < 2:
                ready, _, _ = select.select([fd], [], [], 0.05)
                if not ready:
                    break
                seq += os.read(fd, 2 - len(seq))
            if not seq:
                return "ESC"
            arrows = {b"[A": "UP", b"[B": "DOWN", b"[H": "HOME", b"[F": "END"}
            return arrows.get(seq, "")
        if ch in (b"\r", b"\n"):
            return "ENTER"
        if ch == b"\x03":
            return "q"
        return ch.decode("utf-8", errors="ignore")
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)


def _render_table(state: BrowserState, width: int) -> Table:
    id_w, date_w, msg_w = calculate_column_widths(width)
    table = Table(show_header=True, header_style=THEME["header"], box=box.ASCII, border_style=THEME["panel"])
    table.add_column("ID", width=id_w, no_wrap=True)
    table.add_column("Date", width=date_w, no_wrap=True)
    table.add_column("Message", width=msg_w, no_wrap=True)
    visible = state.visible()
    rows = build_rows([c for _, c in visible], width)
    for (idx, _), row in zip(visible, rows):
        style = THEME["selected"] if idx == state.selected else ""
        table.add_row(*(Text(cell) for cell in row), style=style)
    if not visible:
        table.add_row("", "", "(no conversations)")
    return table


def _render_help() -> Panel:
    return Panel(HELP_TEXT, box=box.ROUNDED, border_style=THEME["panel"], padding=(1, 2), expand=False)


def _render_confirm(conv_id: str) -> Panel:
    text = f"Delete conversation {conv_id}?\n\nPress Enter to confirm, 'n' to cancel"
    return Panel(text, box=box.ROUNDED, border_style=THEME["panel"], padding=(1, 2), expand=False)


def render_browser(state: BrowserState, width: int):
    if state.confirm_id is not None:
        return _render_confirm(state.confirm_id)
    return Group(_render_table(state, width), _render_help())


def glow_view_argv(path: str, cfg: Dict[str, Any], width: int) -> List[str]:
    argv = as_argv(cfg.get("renderer_command") or "glow") + ["-p", "-w", str(max(20, width - 2)), path]
    style = get_style_path(cfg)
    if style:
        argv += ["--style", str(style)]
    return argv


def pager_argv(path: str, cfg: Dict[str, Any]) -> List[str]:
    return as_argv(cfg.get("pager_command") or ["less", "-SR"]) + [path]


def open_conversation(conv: Conversation, argv_for, logger: logging.Logger) -> int:
    """Writes ``conv`` to a temp markdown file and runs the viewer built by ``argv_for``."""
    path = write_temp_file(store.format_conversation_markdown(conv))
    try:
        return subprocess.call(argv_for(str(path)))
    except OSError as exc:
        logger.error("failed to open viewer: %s", exc)
        return 127
    finally:
        if not remove_quietly(path):
            logger.error("failed to remove temporary file %s", path)


def _run_outside(live: Live, fn, *args):
    live.stop()
    try:
        return fn(*args)
    finally:
        live.start(refresh=True)


def run_view(cfg: Dict[str, Any], logger: Optional[logging.Logger] = None, console: Optional[Console] = None) -> Optional[str]:
    """Interactive history browser. Returns an edited message to resend, if any."""
    logger = logger or get_logger()
    console = console or Console()
    width = terminal_width()
    data_dir = get_data_dir(cfg)
    state = BrowserState(store.load_conversations(data_dir))
    logger.debug("viewing %d conversations (width=%d)", len(state.conversations), width)
    edited: Optional[str] = None

    with Live(render_browser(state, width), console=console, refresh_per_second=4) as live:
        while True:
            action = state.handle_key(_get_key())
            if action == "quit":
                break
            if action == "delete":
                conv_id = state.confirm_id
                try:
                    store.delete_conversation(conv_id, data_dir)
                    state.remove(conv_id)
                except PersistenceError as exc:
                    logger.error("failed to delete conversation %s: %s", conv_id, exc)
                state.confirm_id = None
            elif action == "glow":
                _run_outside(live, open_conversation, state.current, lambda p: glow_view_argv(p, cfg, width), logger)
            elif action == "pager":
                _run_outside(live, open_conversation, state.current, lambda p: pager_argv(p, cfg), logger)
            elif action == "edit":
                try:
                    edited = _run_outside(live, edit_text, state.current.message)
                except AscError as exc:
                    logger.error("edit failed: %s", exc)
                    edited = None
                if edited is not None and edited.strip():
                    logger.info("edited message for %s", state.current.id)
                    break
                edited = None
            live.update(render_browser(state, width))
    return edited
