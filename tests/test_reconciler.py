import pytest

from asc.errors import RenderError
from asc.reconciler import ReconcilerState, StreamReconciler, emit_range


class ScriptedRenderer:
    """Returns a prepared line list per call and records the inputs."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.inputs = []

    def render(self, text):
        self.inputs.append(text)
        out = self.outputs.pop(0)
        if isinstance(out, Exception):
            raise out
        return list(out)


class PrefixRenderer:
    """One output line per input line, decorated the way a markdown renderer might."""

    def render(self, text):
        return [f"| {ln}" for ln in text.splitlines()]


def lines(n, prefix="l"):
    return [f"{prefix}{i}" for i in range(n)]


def test_emit_range_basic():
    assert emit_range(0, 2, 3) == (0, -1)
    assert emit_range(2, 5, 3) == (0, 2)
    assert emit_range(5, 9, 4) == (1, 5)


def test_withheld_window_example():
    out = []
    renderer = ScriptedRenderer([lines(2), lines(5), lines(5)])
    rec = StreamReconciler(renderer, held_out=3, write=out.append)

    rec.on_fragment("a")
    assert out == []
    rec.on_fragment("b")
    assert out == ["l0", "l1"]
    rec.on_fragment("c")
    assert out == ["l0", "l1"]

    result = rec.on_complete()
    assert out == lines(5)
    assert result == "a\nb\nc"
    assert rec.state is ReconcilerState.COMPLETED


def test_renderer_receives_full_accumulated_text():
    renderer = ScriptedRenderer([["x"], ["x"]])
    rec = StreamReconciler(renderer, held_out=3, write=lambda _: None)
    rec.on_fragment("first")
    rec.on_fragment("second")
    assert renderer.inputs == ["first\n", "first\nsecond\n"]


def test_empty_stream_emits_nothing():
    out = []
    rec = StreamReconciler(ScriptedRenderer([]), held_out=4, write=out.append)
    assert rec.on_complete() == ""
    assert out == []
    assert rec.state is ReconcilerState.COMPLETED


def test_short_output_is_all_emitted_on_complete():
    out = []
    renderer = ScriptedRenderer([lines(1), lines(2), lines(3)])
    rec = StreamReconciler(renderer, held_out=3, write=out.append)
    for frag in ("a", "b", "c"):
        rec.on_fragment(frag)
    assert out == []
    rec.on_complete()
    assert out == lines(3)


def test_growing_stream_prints_final_render_exactly_once():
    out = []
    rec = StreamReconciler(PrefixRenderer(), held_out=4, write=out.append)
    fragments = [f"line {i}" for i in range(12)]
    for frag in fragments:
        rec.on_fragment(frag)
    final = rec.rendered
    rec.on_complete()
    assert out == final
    assert len(out) == len(set(out))


def test_emit_ranges_never_overlap():
    calls = []

    class Recording(StreamReconciler):
        def _emit(self, lines_, start, end):
            calls.append((max(start, self.emitted), end))
            super()._emit(lines_, start, end)

    renderer = ScriptedRenderer([lines(3), lines(6), lines(6), lines(8), lines(11)])
    rec = Recording(renderer, held_out=3, write=lambda _: None)
    for frag in "abcde":
        rec.on_fragment(frag)
    rec.on_complete()
    prev_end = 0
    for start, end in calls:
        if end > start:
            assert start >= prev_end
            prev_end = end


def test_shrinking_render_does_not_reprint():
    out = []
    renderer = ScriptedRenderer([lines(8), lines(6), lines(9)])
    rec = StreamReconciler(renderer, held_out=2, write=out.append)
    rec.on_fragment("a")
    assert out == lines(6)
    rec.on_fragment("b")
    assert out == lines(6)
    rec.on_fragment("c")
    rec.on_complete()
    assert out == lines(9)


def test_trailing_newlines_trimmed_from_result():
    rec = StreamReconciler(ScriptedRenderer([["x"], ["x"], ["x"]]), held_out=4, write=lambda _: None)
    rec.on_fragment("answer")
    rec.on_fragment("")
    rec.on_fragment("\r")
    assert rec.on_complete() == "answer"


def test_render_failure_keeps_prior_output_and_reports_index():
    out = []
    renderer = ScriptedRenderer([lines(6), RenderError("boom", returncode=2)])
    rec = StreamReconciler(renderer, held_out=3, write=out.append)
    rec.on_fragment("a")
    with pytest.raises(RenderError) as excinfo:
        rec.on_fragment("b")
    assert excinfo.value.fragment_index == 1
    assert "fragment 1" in str(excinfo.value)
    assert out == lines(3)
    assert rec.state is ReconcilerState.FAILED
    with pytest.raises(RuntimeError):
        rec.on_complete()
    assert out == lines(3)


def test_fail_skips_flush():
    out = []
    rec = StreamReconciler(ScriptedRenderer([lines(3)]), held_out=3, write=out.append)
    rec.on_fragment("a")
    rec.fail(RuntimeError("source went away"))
    assert rec.state is ReconcilerState.FAILED
    assert out == []
    with pytest.raises(RuntimeError):
        rec.on_fragment("b")


def test_state_transitions():
    rec = StreamReconciler(ScriptedRenderer([lines(1)]), held_out=3, write=lambda _: None)
    assert rec.state is ReconcilerState.IDLE
    rec.on_fragment("a")
    assert rec.state is ReconcilerState.STREAMING
    rec.on_complete()
    with pytest.raises(RuntimeError):
        rec.on_complete()


def test_held_out_must_be_positive():
    with pytest.raises(ValueError):
        StreamReconciler(ScriptedRenderer([]), held_out=0)
