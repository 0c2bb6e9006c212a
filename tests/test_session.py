import os
import sys

import pytest

from asc import conversation as store
from asc.config_loader import DEFAULT_CONFIG
from asc.errors import AscError, PersistenceError, RenderError, SourceError
from asc.query_source import QuerySource
from asc.reconciler import StreamReconciler
from asc import session


class EchoRenderer:
    def render(self, text):
        return text.splitlines()


class FailingRenderer:
    def __init__(self, fail_at):
        self.calls = 0
        self.fail_at = fail_at

    def render(self, text):
        if self.calls == self.fail_at:
            raise RenderError("renderer crashed", returncode=1)
        self.calls += 1
        return text.splitlines()


def broken_source(lines, error):
    for line in lines:
        yield line
    raise error


def _cfg(tmp_path, **overrides):
    cfg = dict(DEFAULT_CONFIG, data_dir=str(tmp_path / "data"), share_dir=str(tmp_path / "share"))
    cfg.update(overrides)
    return cfg


def test_stream_response_returns_trimmed_text():
    out = []
    rec = StreamReconciler(EchoRenderer(), held_out=2, write=out.append)
    assert session.stream_response(["a", "b", "c", ""], rec) == "a\nb\nc"
    assert out == ["a", "b", "c", ""]


def test_stream_response_source_error_skips_flush():
    out = []
    rec = StreamReconciler(EchoRenderer(), held_out=2, write=out.append)
    with pytest.raises(SourceError):
        session.stream_response(broken_source(["a", "b", "c"], SourceError("gone", returncode=1)), rec)
    assert out == ["a"]


def test_stream_response_closes_source_on_render_error():
    closed = []

    def source():
        try:
            for line in ["a", "b", "c", "d"]:
                yield line
        finally:
            closed.append(True)

    rec = StreamReconciler(FailingRenderer(fail_at=1), held_out=1, write=lambda _: None)
    with pytest.raises(RenderError):
        session.stream_response(source(), rec)
    assert closed == [True]


@pytest.mark.skipif(os.name == "nt", reason="checks the pid with os.kill")
def test_render_failure_stops_query_process(tmp_path):
    pid_file = tmp_path / "pid"
    script = (
        "import os, time\n"
        f"open({str(pid_file)!r}, 'w').write(str(os.getpid()))\n"
        "print('a', flush=True)\n"
        "print('b', flush=True)\n"
        "time.sleep(30)\n"
    )
    src = QuerySource([sys.executable, "-c", script])
    rec = StreamReconciler(FailingRenderer(fail_at=1), held_out=1, write=lambda _: None)
    with pytest.raises(RenderError):
        session.stream_response(src, rec)
    pid = int(pid_file.read_text(encoding="utf-8"))
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_start_new_conversation_persists(tmp_path):
    cfg = _cfg(tmp_path, held_out_line_count=3)
    out = []
    conv = session.start_new_conversation(
        "what is up",
        cfg,
        renderer=EchoRenderer(),
        source=iter(["line 1", "line 2", "line 3", "line 4"]),
        write=out.append,
    )
    assert out == ["line 1", "line 2", "line 3", "line 4"]
    assert conv.message == "what is up"
    assert conv.response == "line 1\nline 2\nline 3\nline 4"
    assert conv.context is None
    assert store.load_conversations(tmp_path / "data")[0].id == conv.id


def test_start_new_conversation_uses_context_file(tmp_path):
    cfg = _cfg(tmp_path)
    store.save_context("project notes", tmp_path / "share")
    conv = session.start_new_conversation("q", cfg, renderer=EchoRenderer(), source=iter(["a"]), write=lambda _: None)
    assert conv.context == "project notes"


def test_render_failure_persists_nothing(tmp_path):
    cfg = _cfg(tmp_path, held_out_line_count=1)
    out = []
    with pytest.raises(RenderError) as excinfo:
        session.start_new_conversation(
            "q",
            cfg,
            renderer=FailingRenderer(fail_at=2),
            source=iter(["a", "b", "c", "d"]),
            write=out.append,
        )
    assert excinfo.value.fragment_index == 2
    assert out == ["a"]
    assert store.load_conversations(tmp_path / "data") == []


def test_source_failure_persists_nothing(tmp_path):
    cfg = _cfg(tmp_path)
    with pytest.raises(SourceError):
        session.start_new_conversation(
            "q",
            cfg,
            renderer=EchoRenderer(),
            source=broken_source(["a"], SourceError("sgpt exited with status 1", returncode=1)),
            write=lambda _: None,
        )
    assert store.load_conversations(tmp_path / "data") == []


def test_persistence_failure_after_full_output(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")
    cfg = _cfg(tmp_path, data_dir=str(blocker), held_out_line_count=4)
    out = []
    with pytest.raises(PersistenceError):
        session.start_new_conversation("q", cfg, renderer=EchoRenderer(), source=iter(["a", "b"]), write=out.append)
    assert out == ["a", "b"]


def test_append_uses_previous_exchange_as_context(tmp_path):
    cfg = _cfg(tmp_path)
    session.start_new_conversation("first", cfg, context="", renderer=EchoRenderer(), source=iter(["one"]), write=lambda _: None)
    conv = session.append_to_conversation("second", cfg, renderer=EchoRenderer(), source=iter(["two"]), write=lambda _: None)
    assert conv.message == "second"
    assert conv.context == "## User\nfirst\n\n## AI\none"


def test_append_without_history_fails(tmp_path):
    with pytest.raises(AscError):
        session.append_to_conversation("x", _cfg(tmp_path), renderer=EchoRenderer(), source=iter([]))


def test_edit_and_resend_with_message(tmp_path):
    cfg = _cfg(tmp_path)
    first = session.start_new_conversation("typo qestion", cfg, context="ctx", renderer=EchoRenderer(), source=iter(["a"]), write=lambda _: None)
    conv = session.edit_and_resend(cfg, message="typo question", conversation_id=first.id, renderer=EchoRenderer(), source=iter(["b"]), write=lambda _: None)
    assert conv.message == "typo question"
    assert conv.context == "ctx"


def test_edit_and_resend_with_editor(tmp_path, monkeypatch):
    cfg = _cfg(tmp_path)
    session.start_new_conversation("old", cfg, context="", renderer=EchoRenderer(), source=iter(["a"]), write=lambda _: None)
    monkeypatch.setattr(session, "edit_text", lambda text, editor=None: text + " but better\n")
    conv = session.edit_and_resend(cfg, renderer=EchoRenderer(), source=iter(["b"]), write=lambda _: None)
    assert conv.message == "old but better"


def test_edit_and_resend_empty_message_aborts(tmp_path, monkeypatch):
    cfg = _cfg(tmp_path)
    session.start_new_conversation("old", cfg, context="", renderer=EchoRenderer(), source=iter(["a"]), write=lambda _: None)
    monkeypatch.setattr(session, "edit_text", lambda text, editor=None: "   \n")
    assert session.edit_and_resend(cfg, renderer=EchoRenderer(), source=iter(["b"])) is None
    assert len(store.load_conversations(tmp_path / "data")) == 1
