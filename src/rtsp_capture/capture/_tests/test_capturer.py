from __future__ import annotations

from collections import deque
from fractions import Fraction
from typing import Optional

import pytest

from rtsp_capture.capture.capturer import CaptureState, Capturer, IdleBackoff, StopReason
from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import CodecParameters, MediaType
from rtsp_capture.config import CaptureConfig
from rtsp_capture.errors import CaptureError, ErrorKind, Outcome

VIDEO = 0
AUDIO = 1


class StubPicture:
    def __init__(self, seq: int) -> None:
        self.seq = seq
        self.width = 64
        self.height = 48
        self.format = "yuv420p"


class StubSource:
    """Replays a script of read results: ints are packets for that stream."""

    def __init__(self, script: list, open_error: Optional[CaptureError] = None, sar: Optional[Fraction] = None) -> None:
        self.sar = sar
        self.script = deque(script)
        self.open_error = open_error
        self.reads = 0
        self.calls: list[str] = []
        self.closed = False

    def open(self, url, options=None, timeout=None) -> None:  # type: ignore[no-untyped-def]
        self.calls.append("open")
        if self.open_error is not None:
            raise self.open_error

    def close(self) -> None:
        self.closed = True

    def codec_parameters_for(self, media_type: MediaType) -> Optional[CodecParameters]:
        if media_type is MediaType.VIDEO:
            return CodecParameters("stub", MediaType.VIDEO, 64, 48, "yuv420p", sample_aspect_ratio=self.sar)
        return None

    def play(self) -> None:
        self.calls.append("play")

    def pause(self) -> None:
        self.calls.append("pause")

    def is_video_packet(self, packet: Packet) -> bool:
        return packet.stream_index == VIDEO

    def read_next_packet(self, packet: Packet) -> Outcome:
        self.reads += 1
        if not self.script:
            return Outcome.end_of_stream()
        item = self.script.popleft()
        if isinstance(item, Outcome):
            return item
        packet.bind(object(), stream_index=item)
        return Outcome.success()


class StubDecoder:
    """Emits one picture after every `latency` submitted packets."""

    def __init__(self, latency: int = 1, reject_at: Optional[int] = None, buffered_at_eos: int = 0) -> None:
        self.latency = latency
        self.reject_at = reject_at
        self.buffered_at_eos = buffered_at_eos
        self.submitted = 0
        self.eos = False
        self.pending: deque[StubPicture] = deque()
        self.emitted = 0
        self.successful_retrieves = 0
        self.closed = False

    def open(self, params: CodecParameters) -> None:
        self.params = params

    def close(self) -> None:
        self.closed = True

    def submit(self, packet: Packet) -> None:
        self.submitted += 1
        if self.reject_at is not None and self.submitted == self.reject_at:
            raise CaptureError(ErrorKind.INVALID_DATA, "decoder", "submit", code=0x41444E49)
        if self.submitted % self.latency == 0:
            self.emitted += 1
            self.pending.append(StubPicture(self.emitted))

    def submit_end_of_stream(self) -> None:
        self.eos = True
        for _ in range(self.buffered_at_eos):
            self.emitted += 1
            self.pending.append(StubPicture(self.emitted))

    def receive_frame(self, frame: Frame) -> Outcome:
        if self.pending:
            frame.bind(self.pending.popleft())
            self.successful_retrieves += 1
            return Outcome.success()
        if self.eos:
            return Outcome.end_of_stream()
        return Outcome.would_block()


class StubSnapshot:
    extension = ".jpg"

    def __init__(self, fail_on: Optional[int] = None) -> None:
        self.encoded: list[int] = []
        self.aspect_ratios: list[Optional[Fraction]] = []
        self.fail_on = fail_on
        self.closed = False

    def encode(self, frame: Frame, sample_aspect_ratio: Optional[Fraction] = None) -> bytes:
        self.aspect_ratios.append(sample_aspect_ratio)
        seq = frame.av_frame.seq
        if self.fail_on is not None and seq == self.fail_on:
            raise CaptureError(ErrorKind.IO_ERROR, "encoder", "encode", "boom")
        self.encoded.append(seq)
        return f"jpeg-{seq}".encode()

    def close(self) -> None:
        self.closed = True


class StubSink:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.writes: list[tuple[str, bytes]] = []

    def write(self, name: str, data: bytes) -> bool:
        self.writes.append((name, data))
        return self.ok


def _capturer(source, decoder, sink=None, snapshot=None, **cfg) -> Capturer:  # type: ignore[no-untyped-def]
    sleeps: list[float] = []
    config = CaptureConfig(file_prefix="test", **cfg)
    cap = Capturer(
        config,
        source=source,
        decoder=decoder,
        snapshot=snapshot or StubSnapshot(),
        sink=sink if sink is not None else StubSink(),
        sleep_fn=sleeps.append,
    )
    cap.sleeps = sleeps  # type: ignore[attr-defined]
    return cap


def test_end_of_stream_before_limit_processes_every_frame() -> None:
    source = StubSource([VIDEO] * 5)
    sink = StubSink()
    cap = _capturer(source, StubDecoder(), sink=sink)

    assert cap.open("rtsp://camera/stream").ok
    report = cap.run(10)

    assert report.frames == 5
    assert report.reason is StopReason.END_OF_STREAM
    assert report.ok
    assert [name for name, _ in sink.writes] == [f"test{i}.jpg" for i in range(5)]
    assert sink.writes[0][1] == b"jpeg-1"
    assert cap.state is CaptureState.STOPPED


def test_open_failure_is_reported_and_run_is_refused() -> None:
    err = CaptureError(ErrorKind.OPEN_ERROR, "source", "open", "unreachable", code=110)
    source = StubSource([], open_error=err)
    cap = _capturer(source, StubDecoder())

    outcome = cap.open("rtsp://10.0.0.1/none")

    assert not outcome.ok
    assert outcome.error is err
    assert "ETIMEDOUT" in outcome.error.label
    assert cap.state is CaptureState.INIT
    assert source.closed
    with pytest.raises(CaptureError):
        cap.run(1)


def test_decoder_latency_needs_four_grabs_for_first_frame() -> None:
    source = StubSource([VIDEO] * 8)
    decoder = StubDecoder(latency=4)
    cap = _capturer(source, decoder)

    cap.open("rtsp://camera/stream")
    report = cap.run(1)

    assert report.frames == 1
    assert report.reason is StopReason.FRAME_LIMIT
    assert source.reads == 4
    assert report.grabs == 4
    assert decoder.successful_retrieves == 1


def test_frame_count_never_exceeds_limit() -> None:
    source = StubSource([VIDEO] * 20)
    decoder = StubDecoder(buffered_at_eos=3)
    cap = _capturer(source, decoder)

    cap.open("rtsp://camera/stream")
    report = cap.run(7)

    assert report.frames == 7
    assert report.reason is StopReason.FRAME_LIMIT


def test_zero_limit_runs_no_iterations() -> None:
    source = StubSource([VIDEO] * 3)
    cap = _capturer(source, StubDecoder())

    cap.open("rtsp://camera/stream")
    report = cap.run(0)

    assert report.frames == 0
    assert source.reads == 0
    assert source.calls == ["open", "play", "pause"]


def test_source_would_block_neither_counts_nor_terminates() -> None:
    wb = Outcome.would_block()
    source = StubSource([wb, wb, VIDEO, wb, wb, wb, VIDEO])
    cap = _capturer(source, StubDecoder(), idle_sleep_ms=4.0)

    cap.open("rtsp://camera/stream")
    report = cap.run(10)

    assert report.frames == 2
    assert report.reason is StopReason.END_OF_STREAM
    assert source.reads == 8
    # idle iterations back off, capped at the configured ceiling
    assert len(cap.sleeps) == 5
    assert max(cap.sleeps) <= 0.004


def test_buffered_frames_are_drained_after_end_of_stream() -> None:
    source = StubSource([VIDEO] * 4)
    decoder = StubDecoder(latency=2, buffered_at_eos=2)
    cap = _capturer(source, decoder)

    cap.open("rtsp://camera/stream")
    report = cap.run(100)

    assert report.frames == 4
    assert report.reason is StopReason.END_OF_STREAM
    assert decoder.eos


def test_non_video_packets_are_discarded() -> None:
    source = StubSource([AUDIO, VIDEO, AUDIO, AUDIO, VIDEO])
    decoder = StubDecoder()
    cap = _capturer(source, decoder)

    cap.open("rtsp://camera/stream")
    report = cap.run(10)

    assert report.frames == 2
    assert report.discarded_packets == 3
    assert decoder.submitted == 2


def test_transport_error_drains_then_reports_fault() -> None:
    err = CaptureError(ErrorKind.IO_ERROR, "source", "read_next_packet", code=104)
    source = StubSource([VIDEO, VIDEO, Outcome.failure(err), VIDEO])
    decoder = StubDecoder(latency=1, buffered_at_eos=1)
    sink = StubSink()
    cap = _capturer(source, decoder, sink=sink)

    cap.open("rtsp://camera/stream")
    report = cap.run(10)

    assert report.frames == 3
    assert report.reason is StopReason.FAULT
    assert report.error is err
    assert not report.ok
    assert len(sink.writes) == 3


def test_invalid_data_ends_session_by_default() -> None:
    source = StubSource([VIDEO] * 6)
    decoder = StubDecoder(reject_at=3)
    cap = _capturer(source, decoder)

    cap.open("rtsp://camera/stream")
    report = cap.run(10)

    assert report.frames == 2
    assert report.reason is StopReason.FAULT
    assert report.error is not None and report.error.kind is ErrorKind.INVALID_DATA
    assert source.reads == 3


def test_invalid_data_skip_is_opt_in() -> None:
    source = StubSource([VIDEO] * 6)
    decoder = StubDecoder(reject_at=3)
    cap = _capturer(source, decoder, skip_invalid_packets=True)

    cap.open("rtsp://camera/stream")
    report = cap.run(10)

    assert report.frames == 5
    assert report.skipped_packets == 1
    assert report.reason is StopReason.END_OF_STREAM


def test_persistence_failure_is_logged_not_fatal(caplog: pytest.LogCaptureFixture) -> None:
    source = StubSource([VIDEO] * 3)
    cap = _capturer(source, StubDecoder(), sink=StubSink(ok=False))

    cap.open("rtsp://camera/stream")
    with caplog.at_level("WARNING"):
        report = cap.run(10)

    assert report.frames == 3
    assert report.failed_snapshots == 3
    assert report.ok
    assert "was not persisted" in caplog.text


def test_snapshot_encode_failure_skips_only_that_frame() -> None:
    source = StubSource([VIDEO] * 3)
    sink = StubSink()
    cap = _capturer(source, StubDecoder(), sink=sink, snapshot=StubSnapshot(fail_on=2))

    cap.open("rtsp://camera/stream")
    report = cap.run(10)

    assert report.frames == 3
    assert report.failed_snapshots == 1
    assert [name for name, _ in sink.writes] == ["test0.jpg", "test2.jpg"]


def test_resource_error_propagates_and_still_stops() -> None:
    class ExhaustedDecoder(StubDecoder):
        def submit(self, packet: Packet) -> None:
            raise CaptureError(ErrorKind.RESOURCE_ERROR, "decoder", "submit", "out of memory")

    source = StubSource([VIDEO])
    decoder = ExhaustedDecoder()
    cap = _capturer(source, decoder)

    cap.open("rtsp://camera/stream")
    with pytest.raises(CaptureError) as info:
        cap.run(5)

    assert info.value.kind is ErrorKind.RESOURCE_ERROR
    assert cap.state is CaptureState.STOPPED
    assert source.calls[-1] == "pause"
    assert decoder.closed


def test_run_issues_play_then_pause_and_releases_everything() -> None:
    source = StubSource([VIDEO])
    decoder = StubDecoder()
    snapshot = StubSnapshot()
    cap = _capturer(source, decoder, snapshot=snapshot)

    cap.open("rtsp://camera/stream")
    cap.run(3)

    assert source.calls == ["open", "play", "pause"]
    assert source.closed and decoder.closed and snapshot.closed


def test_idle_backoff_doubles_to_ceiling_and_resets() -> None:
    sleeps: list[float] = []
    backoff = IdleBackoff(0.004, start_s=0.001, sleep_fn=sleeps.append)

    for _ in range(5):
        backoff.idle()
    backoff.reset()
    backoff.idle()

    assert sleeps == [0.001, 0.002, 0.004, 0.004, 0.004, 0.001]


def test_idle_backoff_disabled_busy_polls() -> None:
    sleeps: list[float] = []
    backoff = IdleBackoff(0.0, sleep_fn=sleeps.append)

    assert backoff.idle() == 0.0
    assert sleeps == []


def test_stream_aspect_ratio_reaches_every_snapshot(caplog: pytest.LogCaptureFixture) -> None:
    source = StubSource([VIDEO] * 2, sar=Fraction(64, 45))
    snapshot = StubSnapshot()
    cap = _capturer(source, StubDecoder(), snapshot=snapshot)

    with caplog.at_level("INFO", logger="rtsp_capture"):
        assert cap.open("rtsp://camera/stream").ok
    open_records = [r for r in caplog.records if r.name == "rtsp_capture.capture.capturer"]
    cap.run(10)

    assert snapshot.aspect_ratios == [Fraction(64, 45)] * 2
    assert open_records == []
