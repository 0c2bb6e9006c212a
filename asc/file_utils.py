import os
import shlex
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from asc.errors import AscError


def write_temp_file(content: str, prefix: str = "conversation-", suffix: str = ".md") -> Path:
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    return Path(name)


def remove_quietly(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return True
    except OSError:
        return False


def resolve_editor(editor: Optional[str] = None) -> list[str]:
    editor = (editor or os.environ.get("EDITOR", "")).strip()
    if not editor:
        raise AscError("EDITOR environment variable is not set")
    return shlex.split(editor)


def edit_text(text: str, editor: Optional[str] = None) -> str:
    """Opens ``text`` in the user's editor and returns the saved contents."""
    argv = resolve_editor(editor)
    path = write_temp_file(text, prefix="edit-", suffix=".txt")
    try:
        rc = subprocess.call(argv + [str(path)])
        if rc != 0:
            raise AscError(f"editor exited with status {rc}")
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise AscError(f"failed to open editor: {exc}") from exc
    finally:
        remove_quietly(path)
