"""Tests for the single-flight transcode queue."""

import asyncio

import pytest

from app.models.schemas import MediaAsset, TranscodeRequest
from app.services.pipeline import ClipValidationError, TranscodeQueue, clip_duration_sec


def request(chapter_id: int, start_ms: int, end_ms: int) -> TranscodeRequest:
    return TranscodeRequest(chapter_id=chapter_id, start_ms=start_ms, end_ms=end_ms)


@pytest.fixture
def queue(engine, settings) -> TranscodeQueue:
    return TranscodeQueue(engine, settings)


@pytest.mark.asyncio
async def test_short_request_becomes_fallback_without_engine(queue, engine, asset) -> None:
    clips = await queue.run(asset, [request(1, 0, 2_500)])

    assert len(clips) == 1
    assert clips[0].is_fallback
    assert clips[0].duration_sec == 2.5
    assert clips[0].error is None
    assert clips[0].media_type == "image/png"
    assert engine.load_calls == 0
    assert engine.cuts == []


@pytest.mark.asyncio
async def test_one_clip_per_request_in_request_order(queue, engine, asset) -> None:
    requests = [
        request(1, 0, 10_000),
        request(2, 10_000, 11_000),
        request(3, 11_000, 20_500),
    ]

    clips = await queue.run(asset, requests)

    assert [c.id for c in clips] == [1, 2, 3]
    assert [c.name for c in clips] == ["clip_1.mp4", "clip_2.mp4", "clip_3.mp4"]
    assert [c.is_fallback for c in clips] == [False, True, False]
    assert clips[0].payload == b"clip_1.mp4:0.00-10.00"
    assert clips[2].payload == b"clip_3.mp4:11.00-20.50"
    assert clips[2].duration_sec == 9.5
    assert engine.load_calls == 1
    assert engine.sources == {"input.mp4": asset.data}
    assert [cut[3] for cut in engine.cuts] == ["clip_1.mp4", "clip_3.mp4"]


@pytest.mark.asyncio
async def test_engine_failure_only_affects_its_request(queue, engine, asset) -> None:
    engine.fail_outputs = {"clip_2.mp4"}
    requests = [request(1, 0, 5_000), request(2, 5_000, 10_000), request(3, 10_000, 15_000)]

    clips = await queue.run(asset, requests)

    assert [c.is_fallback for c in clips] == [False, True, False]
    assert "clip_2.mp4" in clips[1].error
    assert clips[1].name == "clip_2.mp4"


@pytest.mark.asyncio
async def test_setup_failure_degrades_batch_and_does_not_block_next(queue, engine, asset) -> None:
    engine.fail_load = True

    failed = await queue.run(asset, [request(1, 0, 5_000), request(2, 5_000, 6_000)])

    assert [c.is_fallback for c in failed] == [True, True]
    assert failed[0].error == "ffmpeg not available"
    assert failed[1].error is None

    engine.fail_load = False
    clips = await queue.run(asset, [request(1, 0, 5_000)])

    assert not clips[0].is_fallback
    assert engine.load_calls == 2


@pytest.mark.asyncio
async def test_batches_run_in_submission_order_without_overlap(queue, engine) -> None:
    engine.delay = 0.01
    first = MediaAsset(filename="a.mp4", data=b"a")
    second = MediaAsset(filename="b.mov", data=b"b")

    handles = [
        queue.submit(first, [request(1, 0, 4_000), request(2, 4_000, 8_000)]),
        queue.submit(second, [request(1, 0, 3_000)]),
        queue.submit(first, [request(3, 8_000, 12_000)]),
    ]
    assert not queue.idle

    results = await asyncio.gather(*handles)

    assert engine.overlaps == 0
    assert [cut[3] for cut in engine.cuts] == ["clip_1.mp4", "clip_2.mp4", "clip_1.mp4", "clip_3.mp4"]
    assert [cut[0] for cut in engine.cuts] == ["input.mp4", "input.mp4", "input.mov", "input.mp4"]
    assert engine.calls == [
        "load",
        "write input.mp4",
        "cut clip_1.mp4",
        "cut clip_2.mp4",
        "write input.mov",
        "cut clip_1.mp4",
        "write input.mp4",
        "cut clip_3.mp4",
    ]
    assert [len(r) for r in results] == [2, 1, 1]
    assert queue.idle


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_stop_batch(queue, engine, asset) -> None:
    engine.delay = 0.01

    handle = queue.submit(asset, [request(1, 0, 4_000)])
    handle.cancel()
    clips = await queue.run(asset, [request(2, 4_000, 8_000)])

    assert [cut[3] for cut in engine.cuts] == ["clip_1.mp4", "clip_2.mp4"]
    assert not clips[0].is_fallback


@pytest.mark.asyncio
async def test_same_batch_twice_gives_equal_clips(queue, asset) -> None:
    requests = [request(1, 0, 5_000), request(2, 5_000, 6_000)]

    first = await queue.run(asset, requests)
    second = await queue.run(asset, requests)

    assert [c.payload for c in first] == [c.payload for c in second]
    assert [c.is_fallback for c in first] == [c.is_fallback for c in second]


@pytest.mark.asyncio
async def test_progress_messages(queue, asset) -> None:
    events: list[tuple[int, int, str]] = []

    async def on_progress(completed: int, total: int, message: str) -> None:
        events.append((completed, total, message))

    await queue.run(asset, [request(1, 0, 5_000), request(2, 5_000, 9_000)], on_progress)

    assert events == [
        (0, 2, "Loading FFmpeg..."),
        (0, 2, "Processing clip 1..."),
        (1, 2, "Processing clip 2..."),
        (2, 2, "Done!"),
    ]


@pytest.mark.asyncio
async def test_progress_callback_error_is_ignored(queue, asset) -> None:
    async def on_progress(completed: int, total: int, message: str) -> None:
        raise RuntimeError("socket closed")

    clips = await queue.run(asset, [request(1, 0, 5_000)], on_progress)

    assert not clips[0].is_fallback


@pytest.mark.parametrize(
    ("start_ms", "end_ms", "expected"),
    [
        (0, 3_000, 3.0),
        (1_005, 4_009, 3.0),
        (1_000, 3_999, 2.99),
        (1_009, 4_001, 2.99),
        (0, 2_500, 2.5),
    ],
)
def test_duration_truncates_the_span(start_ms, end_ms, expected) -> None:
    assert clip_duration_sec(start_ms, end_ms) == pytest.approx(expected)


def test_validate_minimum_duration_boundary(queue) -> None:
    assert queue.validate(request(1, 1_005, 4_009)) == pytest.approx(3.0)

    with pytest.raises(ClipValidationError) as exc_info:
        queue.validate(request(4, 1_000, 3_999))

    assert exc_info.value.chapter_id == 4
    assert exc_info.value.duration_sec == pytest.approx(2.99)
    assert "at least 3 seconds" in str(exc_info.value)


@pytest.mark.asyncio
async def test_span_under_minimum_falls_back_below_three_seconds(queue, engine, asset) -> None:
    # Bounds 1.009s and 4.001s each truncate to 1.00 and 4.00, the span is 2992 ms
    short = request(2, 1_009, 4_001)

    clips = await queue.run(asset, [short])

    assert clips[0].is_fallback
    assert clips[0].error is None
    assert clips[0].duration_sec < 3
    assert engine.calls == []
    with pytest.raises(ClipValidationError) as exc_info:
        queue.validate(short)
    assert "(2.99s)" in str(exc_info.value)


@pytest.mark.asyncio
async def test_placeholder_render_failure_keeps_batch_length(queue, asset, monkeypatch) -> None:
    def broken_render(duration_sec=None) -> bytes:
        raise OSError("cannot load font")

    monkeypatch.setattr(queue.fallback_factory, "render_placeholder", broken_render)

    clips = await queue.run(asset, [request(1, 0, 5_000), request(2, 5_000, 6_000)])

    assert [c.is_fallback for c in clips] == [False, True]
    assert clips[1].payload == b""
    assert clips[1].error == "Placeholder render failed: cannot load font"
