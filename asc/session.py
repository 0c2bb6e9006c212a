import logging
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

from asc import conversation as store
from asc.config_loader import get_data_dir, get_share_dir, held_out_line_count
from asc.errors import AscError, SourceError
from asc.file_utils import edit_text
from asc.log_utils import get_logger
from asc.query_source import QuerySource, build_query_argv, compose_prompt
from asc.reconciler import StreamReconciler
from asc.renderer import Renderer, build_renderer, render_width
from asc.schemas import Conversation


def stream_response(fragments: Iterable[str], reconciler: StreamReconciler) -> str:
    """Feeds every fragment through the reconciler and returns the final text.

    The fragment iterator is closed on the way out, which stops a query
    process that is still running after a render failure.
    """
    iterator = iter(fragments)
    try:
        for fragment in iterator:
            reconciler.on_fragment(fragment)
    except SourceError as exc:
        reconciler.fail(exc)
        raise
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()
    return reconciler.on_complete()


def start_new_conversation(
    message: str,
    cfg: Dict[str, Any],
    provider: str = "sgpt",
    context: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
    renderer: Optional[Renderer] = None,
    source: Optional[Iterable[str]] = None,
    write: Optional[Callable[[str], None]] = None,
) -> Conversation:
    """Streams an answer for ``message`` to the terminal and saves the exchange.

    ``context`` defaults to the saved context file. Nothing is persisted when
    the query process or the renderer fails.
    """
    logger = logger or get_logger()
    if context is None:
        context = store.load_context(get_share_dir(cfg))
    prompt = compose_prompt(message, context, provider)
    if source is None:
        source = QuerySource(build_query_argv(prompt, provider, cfg))
    if renderer is None:
        renderer = build_renderer(cfg, width=render_width(int(cfg.get("width_margin", 2))))
    reconciler = StreamReconciler(renderer, held_out=held_out_line_count(cfg), write=write)
    logger.info("conversation start provider=%s context=%s", provider, bool(context))
    response = stream_response(source, reconciler)
    conv = store.save_new_conversation(response, message, context, data_dir=get_data_dir(cfg))
    logger.info("conversation saved id=%s fragments=%d", conv.id, reconciler.fragments)
    return conv


def _pick_conversation(cfg: Dict[str, Any], conversation_id: Optional[str]) -> Conversation:
    data_dir: Path = get_data_dir(cfg)
    if conversation_id:
        conv = store.get_conversation(conversation_id, data_dir)
        if conv is None:
            raise AscError(f"conversation not found: {conversation_id}")
        return conv
    conv = store.latest_conversation(data_dir)
    if conv is None:
        raise AscError("no previous conversation found")
    return conv


def append_to_conversation(
    message: str,
    cfg: Dict[str, Any],
    conversation_id: Optional[str] = None,
    provider: str = "sgpt",
    **kwargs: Any,
) -> Conversation:
    previous = _pick_conversation(cfg, conversation_id)
    context = store.build_followup_context(previous)
    return start_new_conversation(message, cfg, provider=provider, context=context, **kwargs)


def edit_and_resend(
    cfg: Dict[str, Any],
    message: Optional[str] = None,
    conversation_id: Optional[str] = None,
    editor: Optional[str] = None,
    provider: str = "sgpt",
    **kwargs: Any,
) -> Optional[Conversation]:
    previous = _pick_conversation(cfg, conversation_id)
    if message is None:
        message = edit_text(previous.message, editor=editor)
    message = message.strip()
    if not message:
        get_logger().info("edit aborted: empty message")
        return None
    return start_new_conversation(message, cfg, provider=provider, context=previous.context or "", **kwargs)
