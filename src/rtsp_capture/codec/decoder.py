from __future__ import annotations

import logging
from typing import Any

from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import CodecParameters
from rtsp_capture.codec.session import CodecSession
from rtsp_capture.errors import CaptureError, ErrorKind, Outcome

logger = logging.getLogger(__name__)


class Decoder(CodecSession):
    """Packet-in, frame-out decode session.

    PyAV's `CodecContext.decode()` runs FFmpeg's send/receive loop and returns
    whatever frames became available. Those frames are queued here so that
    `receive_frame()` can report backpressure (`WOULD_BLOCK`) until a submitted
    packet actually produces a picture, and `END_OF_STREAM` once a flush has
    been drained.
    """

    component = "decoder"
    mode = "r"

    def __init__(self, factory=None) -> None:  # type: ignore[no-untyped-def]
        super().__init__(factory)
        self._eos_submitted = False
        self._submitted = 0

    def _bind(self, ctx: Any, parameters: CodecParameters) -> None:
        if getattr(ctx, "is_open", False):
            # FFmpeg keeps the negotiated state of an open context
            return
        if parameters.extradata:
            ctx.extradata = parameters.extradata
        if parameters.width and parameters.height:
            ctx.width = parameters.width
            ctx.height = parameters.height
        if parameters.pix_fmt:
            ctx.pix_fmt = parameters.pix_fmt
        # Frame threading reorders latency; decode strictly in submission order
        ctx.thread_count = 1

    def _on_open(self) -> None:
        super()._on_open()
        self._eos_submitted = False
        self._submitted = 0

    @property
    def end_of_stream_submitted(self) -> bool:
        return self._eos_submitted

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, packet: Packet) -> None:
        if not self.is_open:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "submit", "decoder is not open")
        if self._eos_submitted:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "submit", "end of stream already submitted")
        try:
            frames = self.context.decode(packet.av_packet)
        except CaptureError:
            raise
        except Exception as exc:
            raise CaptureError.from_exception(exc, self.component, "submit", ErrorKind.INVALID_DATA) from exc
        self._submitted += 1
        self._pending.extend(frames or ())

    def submit_end_of_stream(self) -> None:
        if not self.is_open or self._eos_submitted:
            return
        self._eos_submitted = True
        try:
            frames = self.context.decode(None)
        except Exception as exc:
            raise CaptureError.from_exception(exc, self.component, "submit_end_of_stream") from exc
        self._pending.extend(frames or ())
        logger.debug("decoder: flushed, %d frame(s) buffered", len(self._pending))

    def receive_frame(self, frame: Frame) -> Outcome:
        if not self.is_open:
            return Outcome.failure(
                CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "receive_frame", "decoder is not open")
            )
        if self._pending:
            frame.bind(self._pending.popleft())
            return Outcome.success()
        if self._eos_submitted:
            return Outcome.end_of_stream()
        return Outcome.would_block()
