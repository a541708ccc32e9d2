import asyncio

import pytest

from render_context.config.loader import RenderConfig
from render_context.context import RenderContext
from render_context.scheduler import FragmentScheduler, RenderState
from render_context.segments import SegmentState

pytestmark = pytest.mark.render


class RecordingSink:
    def __init__(self) -> None:
        self.chunks: list[str] = []
        self.finished = 0

    def write(self, chunk: str) -> None:
        self.chunks.append(chunk)

    def finish(self) -> None:
        self.finished += 1


def _config(**overrides) -> RenderConfig:
    payload = {"default_fragment_timeout_ms": None, "encoding": "utf-8"}
    payload.update(overrides)
    return RenderConfig.from_mapping(payload)


def _root(sink: RecordingSink, **overrides) -> tuple[FragmentScheduler, RenderContext]:
    scheduler = FragmentScheduler(sink, config=_config(**overrides))
    return scheduler, RenderContext(scheduler, scheduler.root)


def test_literals_are_flushed_immediately() -> None:
    sink = RecordingSink()
    _, context = _root(sink)
    context.write("a").write("b")
    assert sink.chunks == ["a", "b"]


def test_flush_stops_at_pending_placeholder_and_resumes_in_order() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink)
        completions = {}

        def fragment(name):
            def callback(ctx, done):
                completions[name] = (ctx, done)

            return callback

        context.write("1").begin_async_fragment(fragment("a")).write("2")
        context.begin_async_fragment(fragment("b")).write("3").end_render()
        await asyncio.sleep(0)

        assert sink.chunks == ["1"]
        assert scheduler.pending == 2

        ctx_b, done_b = completions["b"]
        ctx_b.write("B")
        done_b()
        # The later sibling resolved first, so nothing new may be flushed.
        assert sink.chunks == ["1"]
        assert scheduler.pending == 1

        ctx_a, done_a = completions["a"]
        ctx_a.write("A")
        done_a()
        assert sink.chunks == ["1", "A2B3"]
        assert scheduler.pending == 0
        assert scheduler.state is RenderState.FLUSHED
        assert sink.finished == 1
        await context.wait()

    asyncio.run(run_test())


def test_resolved_parent_flushes_up_to_pending_child() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink)
        inner_done = []

        def outer(ctx, done):
            ctx.write("x")
            ctx.begin_async_fragment(lambda inner, finish: inner_done.append((inner, finish)))
            ctx.write("z")
            done()

        context.begin_async_fragment(outer).write("!").end_render()
        await asyncio.sleep(0)
        assert sink.chunks == ["x"]
        assert scheduler.pending == 1

        await asyncio.sleep(0)
        inner, finish = inner_done[0]
        inner.write("y")
        finish()
        assert "".join(sink.chunks) == "xyz!"
        await context.wait()

    asyncio.run(run_test())


def test_failed_fragment_discards_nested_writes_and_nested_fragments() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink)
        errors = []
        context.on("error", errors.append)

        def outer(ctx, done):
            ctx.write("partial")
            ctx.begin_async_fragment(lambda inner, finish: (inner.write("inner"), finish()))
            done(RuntimeError("outer failed"))

        context.write("<").begin_async_fragment(outer).write(">").end_render()
        await context.wait()
        return sink, scheduler, errors

    sink, scheduler, errors = asyncio.run(run_test())
    assert "".join(sink.chunks) == "<>"
    assert [str(err) for err in errors] == ["outer failed"]
    assert scheduler.errors == errors
    assert scheduler.pending == 0


def test_pending_count_tracks_every_placeholder_in_the_tree() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink)
        observed = []

        def leaf(ctx, done):
            observed.append(scheduler.pending)
            done()

        def branch(ctx, done):
            ctx.begin_async_fragment(leaf).begin_async_fragment(leaf)
            observed.append(scheduler.pending)
            done()

        context.begin_async_fragment(branch).end_render()
        observed.append(scheduler.pending)
        await context.wait()
        return observed

    # end_render() returns first, then the branch runs, then each leaf.
    assert asyncio.run(run_test()) == [1, 3, 2, 1]


def test_writes_to_settled_fragment_are_dropped() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink)
        leaked = []

        def fragment(ctx, done):
            ctx.write("in")
            done()
            leaked.append(ctx)
            ctx.write("late")

        context.begin_async_fragment(fragment).end_render()
        await context.wait()
        return sink, leaked[0]

    sink, nested = asyncio.run(run_test())
    assert "".join(sink.chunks) == "in"
    assert nested.is_nested
    assert nested.root.is_nested is False


def test_placeholder_settles_only_once() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink)
        holder = []
        context.begin_async_fragment(lambda ctx, done: holder.append(done))
        placeholder = scheduler.root.segments[0]
        await asyncio.sleep(0)
        done = holder[0]
        done(None, "first")
        done(ValueError("second"))
        done(None, "third")
        context.end_render()
        await context.wait()
        return sink, scheduler, placeholder

    sink, scheduler, placeholder = asyncio.run(run_test())
    assert placeholder.state is SegmentState.RESOLVED
    assert "".join(sink.chunks) == "first"
    assert scheduler.errors == []


def test_default_timeout_comes_from_config() -> None:
    async def run_test():
        sink = RecordingSink()
        scheduler, context = _root(sink, default_fragment_timeout_ms=20)
        context.write("a").begin_async_fragment(lambda ctx, done: None).write("b").end_render()
        await context.wait()
        return sink, scheduler

    sink, scheduler = asyncio.run(run_test())
    assert "".join(sink.chunks) == "ab"
    assert len(scheduler.errors) == 1
    assert scheduler.root.segments[1].state is SegmentState.TIMED_OUT


def test_invalid_timeout_is_rejected() -> None:
    async def run_test():
        _, context = _root(RecordingSink())
        with pytest.raises(ValueError):
            context.begin_async_fragment(lambda ctx, done: done(), 0)

    asyncio.run(run_test())


def test_sink_write_reentrancy_does_not_corrupt_flush() -> None:
    async def run_test():
        class ReentrantSink(RecordingSink):
            def write(self, chunk: str) -> None:
                super().write(chunk)
                if chunk == "a":
                    context.write("b")

        sink = ReentrantSink()
        scheduler = FragmentScheduler(sink, config=_config())
        context = RenderContext(scheduler, scheduler.root)
        context.write("a").end_render()
        await context.wait()
        return sink

    assert asyncio.run(run_test()).chunks == ["a", "b"]
