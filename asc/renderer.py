"""Markdown renderers used by the streaming reconciler and the history viewer.

Every renderer is a stateless function of the full text: the reconciler calls
``render`` once per streamed line with everything received so far.
"""
import io
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from rich.console import Console
from rich.markdown import Markdown

from asc.config_loader import as_argv, get_style_path
from asc.errors import AscError, RenderError

MIN_RENDER_WIDTH = 20


class Renderer(Protocol):
    def render(self, text: str) -> List[str]:
        ...


@dataclass
class RenderOptions:
    style_path: Optional[Path] = None
    width: Optional[int] = None


def terminal_width(default: int = 80) -> int:
    return shutil.get_terminal_size((default, 24)).columns


def render_width(margin: int = 2) -> int:
    return max(MIN_RENDER_WIDTH, terminal_width() - margin)


class GlowRenderer:
    """Runs a fresh ``glow`` process per call; no state is shared between calls."""

    def __init__(self, options: Optional[RenderOptions] = None, command: Any = "glow", timeout: float = 30) -> None:
        self.options = options or RenderOptions()
        self.command = as_argv(command)
        self.timeout = timeout

    def argv(self) -> List[str]:
        argv = list(self.command)
        if self.options.width:
            argv += ["-w", str(self.options.width)]
        if self.options.style_path:
            argv += ["--style", str(self.options.style_path)]
        return argv

    def render(self, text: str) -> List[str]:
        env = dict(os.environ)
        env["CLICOLOR_FORCE"] = "1"
        try:
            proc = subprocess.run(
                self.argv(),
                input=text,
                capture_output=True,
                text=True,
                env=env,
                timeout=self.timeout,
                shell=False,
            )
        except FileNotFoundError as exc:
            raise RenderError(f"renderer not found: {self.command[0]}") from exc
        except subprocess.TimeoutExpired as exc:
            raise RenderError(f"renderer timed out after {self.timeout}s", returncode=124) from exc
        except OSError as exc:
            raise RenderError(f"failed to execute renderer: {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            raise RenderError(
                f"failed to execute {self.command[0]}: {stderr[-400:] or 'no stderr'}",
                returncode=proc.returncode,
                stderr=stderr,
            )
        return proc.stdout.splitlines()


class RichMarkdownRenderer:
    """In-process renderer; style files are glow-specific and ignored here."""

    def __init__(self, options: Optional[RenderOptions] = None, color: bool = True) -> None:
        self.options = options or RenderOptions()
        self.color = color

    def render(self, text: str) -> List[str]:
        console = Console(
            file=io.StringIO(),
            width=self.options.width or 80,
            force_terminal=self.color,
            color_system="standard" if self.color else None,
            highlight=False,
        )
        try:
            with console.capture() as capture:
                console.print(Markdown(text))
        except Exception as exc:
            raise RenderError(f"rich markdown rendering failed: {exc}") from exc
        return [line.rstrip() for line in capture.get().splitlines()]


def build_renderer(cfg: Dict[str, Any], width: Optional[int] = None) -> Renderer:
    options = RenderOptions(style_path=get_style_path(cfg), width=width)
    kind = str(cfg.get("renderer") or "glow").lower()
    if kind == "rich":
        return RichMarkdownRenderer(options)
    if kind != "glow":
        raise AscError(f"unknown renderer: {kind}")
    return GlowRenderer(
        options,
        command=cfg.get("renderer_command") or "glow",
        timeout=float(cfg.get("render_timeout") or 30),
    )
