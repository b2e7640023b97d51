from __future__ import annotations

"""
Capture orchestrator: INIT -> STREAMING -> DRAINING -> STOPPED.

Each loop iteration does one *grab* (read a packet, feed it to the decoder)
and one *retrieve* (ask the decoder for a frame). The two are deliberately
decoupled: a decoder may need several packets before its first picture and
may hold pictures back, so one packet is not one frame. `WOULD_BLOCK` from
either side is backpressure; it never ends the loop or counts a frame.

When the source is exhausted or faults, end-of-stream is submitted to the
decoder and the loop keeps retrieving until the decoder reports
`END_OF_STREAM`, so buffered pictures are still persisted.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Callable, Optional

from rtsp_capture.capture.sink import FileFrameSink, FrameSink
from rtsp_capture.capture.snapshot import SnapshotEncoder, resolve_snapshot_format
from rtsp_capture.capture.source import StreamSource
from rtsp_capture.codec.decoder import Decoder
from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import MediaType
from rtsp_capture.config import CaptureConfig
from rtsp_capture.errors import CaptureError, ErrorKind, Outcome, Status

logger = logging.getLogger(__name__)


class CaptureState(str, Enum):
    INIT = "init"
    STREAMING = "streaming"
    DRAINING = "draining"
    STOPPED = "stopped"


class StopReason(str, Enum):
    FRAME_LIMIT = "frame_limit"
    END_OF_STREAM = "end_of_stream"
    FAULT = "fault"


class _Grab(Enum):
    IDLE = 0
    FED = 1
    STOP = 2


@dataclass(frozen=True)
class RunReport:
    frames: int
    reason: StopReason
    error: Optional[CaptureError] = None
    grabs: int = 0
    discarded_packets: int = 0
    skipped_packets: int = 0
    failed_snapshots: int = 0

    @property
    def ok(self) -> bool:
        return self.reason is not StopReason.FAULT


class IdleBackoff:
    """Adaptive sleep for iterations that made no progress.

    Doubles from `start_s` up to `max_s` across consecutive idle iterations
    and snaps back to zero on progress. `max_s == 0` busy-polls.
    """

    def __init__(self, max_s: float, start_s: float = 0.0005, sleep_fn: Callable[[float], None] = time.sleep) -> None:
        self.max_s = max(0.0, float(max_s))
        self.start_s = min(max(0.0, float(start_s)), self.max_s)
        self._sleep = sleep_fn
        self._delay = 0.0
        self.total_sleeps = 0

    def reset(self) -> None:
        self._delay = 0.0

    def idle(self) -> float:
        if self.max_s <= 0.0:
            return 0.0
        self._delay = self.start_s if self._delay <= 0.0 else min(self.max_s, self._delay * 2.0)
        self._sleep(self._delay)
        self.total_sleeps += 1
        return self._delay


class Capturer:
    """Drives one capture session from `open(url)` to the end of `run()`."""

    component = "capturer"

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        *,
        source: Optional[StreamSource] = None,
        decoder: Optional[Decoder] = None,
        snapshot: Optional[SnapshotEncoder] = None,
        sink: Optional[FrameSink] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or CaptureConfig()
        self._source = source or StreamSource()
        self._decoder = decoder or Decoder()
        self._snapshot = snapshot or SnapshotEncoder(resolve_snapshot_format(self.config.image_format))
        self._sink: FrameSink = sink or FileFrameSink(self.config.output_dir)
        self._backoff = IdleBackoff(self.config.idle_sleep_ms / 1000.0, sleep_fn=sleep_fn)
        self._packet = Packet()
        self._picture = Frame()
        self._state = CaptureState.INIT
        self._opened = False
        self._frame_count = 0
        self._fault: Optional[CaptureError] = None
        self._grabs = 0
        self._discarded = 0
        self._skipped = 0
        self._failed_snapshots = 0
        self._sample_aspect_ratio: Optional[Fraction] = None

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def source(self) -> StreamSource:
        return self._source

    @property
    def decoder(self) -> Decoder:
        return self._decoder

    # --- open ----------------------------------------------------------------
    def open(self, url: str) -> Outcome:
        if self._state is not CaptureState.INIT or self._opened:
            return Outcome.failure(
                CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "open", f"cannot open in state {self._state.value}")
            )
        try:
            self._source.open(url, self.config.source_options(), self.config.source_timeouts())
            params = self._source.codec_parameters_for(MediaType.VIDEO)
            if params is None:
                raise CaptureError(ErrorKind.NO_VIDEO_STREAM, "source", "codec_parameters_for", "no video parameters")
            self._decoder.open(params)
            self._sample_aspect_ratio = params.sample_aspect_ratio
        except CaptureError as exc:
            self._log_error(exc)
            self._source.close()
            self._decoder.close()
            return Outcome.failure(exc)
        self._opened = True
        return Outcome.success()

    # --- run -----------------------------------------------------------------
    def run(self, max_frame_count: int) -> RunReport:
        if not self._opened or self._state is not CaptureState.INIT:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "run", "capturer is not open")
        limit = max(0, int(max_frame_count))
        self._state = CaptureState.STREAMING
        self._frame_count = 0
        reason = StopReason.FRAME_LIMIT
        terminal: Optional[CaptureError] = None
        self._source.play()
        try:
            while self._frame_count < limit:
                fed = False
                if self._state is CaptureState.STREAMING:
                    grab = self._grab()
                    fed = grab is _Grab.FED
                    if grab is _Grab.STOP:
                        self._state = CaptureState.DRAINING

                outcome = self._decoder.receive_frame(self._picture)
                if outcome.status is Status.WOULD_BLOCK:
                    if not fed:
                        self._backoff.idle()
                    continue
                if outcome.status is Status.END_OF_STREAM:
                    reason = StopReason.END_OF_STREAM
                    break
                if outcome.status is Status.ERROR:
                    terminal = outcome.error
                    if terminal is not None:
                        self._log_error(terminal)
                    reason = StopReason.FAULT
                    break

                self._backoff.reset()
                self._process_frame(self._picture)
                self._picture.reset()
                self._frame_count += 1
        finally:
            self._source.pause()
            self._state = CaptureState.STOPPED
            self.close()

        if reason is not StopReason.FAULT and self._fault is not None:
            reason = StopReason.FAULT
            terminal = self._fault
        report = RunReport(
            frames=self._frame_count,
            reason=reason,
            error=terminal,
            grabs=self._grabs,
            discarded_packets=self._discarded,
            skipped_packets=self._skipped,
            failed_snapshots=self._failed_snapshots,
        )
        logger.info(
            "capture stopped: reason=%s frames=%d grabs=%d discarded=%d skipped=%d failed_snapshots=%d",
            report.reason.value,
            report.frames,
            report.grabs,
            report.discarded_packets,
            report.skipped_packets,
            report.failed_snapshots,
        )
        return report

    def close(self) -> None:
        self._packet.reset()
        self._picture.reset()
        self._source.close()
        self._decoder.close()
        self._snapshot.close()

    # --- loop steps ----------------------------------------------------------
    def _grab(self) -> _Grab:
        self._grabs += 1
        outcome = self._source.read_next_packet(self._packet)
        if outcome.status is Status.WOULD_BLOCK:
            return _Grab.IDLE
        if outcome.status is Status.END_OF_STREAM:
            self._drain()
            return _Grab.STOP
        if outcome.status is Status.ERROR:
            if outcome.error is not None:
                self._log_error(outcome.error)
                self._fault = outcome.error
            self._drain()
            return _Grab.STOP
        try:
            if not self._source.is_video_packet(self._packet):
                # Only the selected video stream is decoded; audio and data
                # packets are read to keep the demuxer moving and then dropped.
                self._discarded += 1
                return _Grab.IDLE
            self._decoder.submit(self._packet)
            return _Grab.FED
        except CaptureError as exc:
            if exc.kind is ErrorKind.RESOURCE_ERROR:
                raise
            if exc.kind.transient:
                return _Grab.IDLE
            if exc.kind is ErrorKind.INVALID_DATA and self.config.skip_invalid_packets:
                self._skipped += 1
                logger.warning("decoder rejected packet (%s); skipping", exc.label)
                return _Grab.IDLE
            self._log_error(exc)
            self._fault = exc
            self._drain()
            return _Grab.STOP
        finally:
            self._packet.reset()

    def _drain(self) -> None:
        logger.debug("capturer: draining decoder")
        try:
            self._decoder.submit_end_of_stream()
        except CaptureError as exc:
            if exc.kind is ErrorKind.RESOURCE_ERROR:
                raise
            self._log_error(exc)
            if self._fault is None:
                self._fault = exc

    def _process_frame(self, frame: Frame) -> None:
        index = self._frame_count
        logger.debug("video frame %d: %dx%d %s", index, frame.width, frame.height, frame.format)
        try:
            data = self._snapshot.encode(frame, sample_aspect_ratio=self._sample_aspect_ratio)
        except CaptureError as exc:
            if exc.kind is ErrorKind.RESOURCE_ERROR:
                raise
            self._failed_snapshots += 1
            self._log_error(exc)
            return
        name = f"{self.config.file_prefix}{index}{self._snapshot.extension}"
        if not self._sink.write(name, data):
            self._failed_snapshots += 1
            logger.warning("snapshot %s was not persisted", name)

    @staticmethod
    def _log_error(exc: CaptureError) -> None:
        logger.error(
            "component=%s operation=%s error=%s%s",
            exc.component,
            exc.operation,
            exc.label,
            f" ({exc.message})" if exc.message else "",
        )
