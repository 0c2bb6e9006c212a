import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from asc.config_loader import get_data_dir
from asc.errors import PersistenceError
from asc.log_utils import get_logger
from asc.schemas import Conversation

ID_FORMAT = "%Y%m%d%H%M%S"
CONTEXT_FILENAME = "context.txt"

logger = get_logger("asc.conversation")


def conversations_dir(data_dir: Path) -> Path:
    return Path(data_dir) / "conversations"


def _write_json(path: Path, payload: str) -> None:
    """Writes payload atomically."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(payload)
    os.replace(tmp, path)


def _new_id(directory: Path, now: datetime) -> str:
    base = now.strftime(ID_FORMAT)
    candidate = base
    n = 1
    while (directory / f"{candidate}.json").exists():
        candidate = f"{base}-{n}"
        n += 1
    return candidate


def save_new_conversation(
    response: str,
    message: str,
    context: str = "",
    data_dir: Optional[Path] = None,
    now: Optional[datetime] = None,
) -> Conversation:
    if data_dir is None:
        data_dir = get_data_dir()
    directory = conversations_dir(data_dir)
    now = now or datetime.now().astimezone()
    try:
        directory.mkdir(parents=True, exist_ok=True)
        conv_id = _new_id(directory, now)
        path = directory / f"{conv_id}.json"
        conv = Conversation(
            id=conv_id,
            timestamp=now,
            message=message,
            response=response,
            file_path=str(path.resolve()),
            context=context or None,
        )
        _write_json(path, conv.to_json())
    except OSError as exc:
        raise PersistenceError(f"failed to save conversation: {exc}", path=str(directory)) from exc
    logger.debug("saved conversation %s at %s", conv.id, conv.file_path)
    return conv


def load_conversations(data_dir: Path) -> List[Conversation]:
    """All readable conversations, newest first. Broken files are skipped."""
    directory = conversations_dir(data_dir)
    if not directory.is_dir():
        return []
    conversations: List[Conversation] = []
    for path in sorted(directory.glob("*.json")):
        if not path.is_file():
            continue
        try:
            conv = Conversation.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            logger.error("failed to read conversation file %s: %s", path.name, exc)
            continue
        except ValidationError as exc:
            logger.error("failed to parse conversation file %s: %s", path.name, exc.errors()[:1])
            continue
        if not conv.file_path:
            conv.file_path = str(path.resolve())
            try:
                _write_json(path, conv.to_json())
            except OSError as exc:
                logger.error("failed to back-fill file_path in %s: %s", path.name, exc)
                continue
        conversations.append(conv)
    conversations.sort(key=lambda c: (c.timestamp.timestamp(), c.id), reverse=True)
    return conversations


def latest_conversation(data_dir: Path) -> Optional[Conversation]:
    items = load_conversations(data_dir)
    return items[0] if items else None


def get_conversation(conv_id: str, data_dir: Path) -> Optional[Conversation]:
    for conv in load_conversations(data_dir):
        if conv.id == conv_id:
            return conv
    return None


def delete_conversation(conv_id: str, data_dir: Path) -> None:
    path = conversations_dir(data_dir) / f"{conv_id}.json"
    try:
        path.unlink()
    except OSError as exc:
        raise PersistenceError(f"failed to delete conversation file: {exc}", path=str(path)) from exc
    logger.debug("deleted conversation %s", conv_id)


def format_conversation_markdown(conv: Conversation) -> str:
    parts = [f"# Conversation {conv.id}"]
    if conv.context:
        parts.append(f"## Context\n{conv.context}")
    parts.append(f"## User\n{conv.message}")
    parts.append(f"## AI\n{conv.response}")
    return "\n\n".join(parts)


def build_followup_context(conv: Conversation) -> str:
    """Context for continuing ``conv``: its own context plus the last exchange."""
    exchange = f"## User\n{conv.message}\n\n## AI\n{conv.response}"
    if conv.context:
        return f"{conv.context}\n\n{exchange}"
    return exchange


# --- Context file ---
def context_path(share_dir: Path) -> Path:
    return Path(share_dir) / CONTEXT_FILENAME


def load_context(share_dir: Path) -> str:
    path = context_path(share_dir)
    if not path.exists():
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PersistenceError(f"failed to read context file: {exc}", path=str(path)) from exc


def save_context(context: str, share_dir: Path) -> Path:
    path = context_path(share_dir)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(context, encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"failed to write context file: {exc}", path=str(path)) from exc
    return path


def clear_context(share_dir: Path) -> None:
    path = context_path(share_dir)
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise PersistenceError(f"failed to remove context file: {exc}", path=str(path)) from exc
