from __future__ import annotations

import logging
from typing import Any

from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import CodecParameters
from rtsp_capture.codec.session import CodecSession
from rtsp_capture.errors import CaptureError, ErrorKind, Outcome

logger = logging.getLogger(__name__)


class Encoder(CodecSession):
    """Frame-in, packet-out encode session.

    Intended for still-image codecs (MJPEG, PNG, PPM) where one `encode()`
    is answered by exactly one packet from `receive_packet()`.

    Usage:
        with Encoder() as enc:
            enc.open(CodecParameters.for_picture('mjpeg', w, h, 'yuvj422p'))
            enc.encode(frame)
            enc.receive_packet(packet)
    """

    component = "encoder"
    mode = "w"

    def __init__(self, factory=None) -> None:  # type: ignore[no-untyped-def]
        super().__init__(factory)
        self._ended = False

    def _bind(self, ctx: Any, parameters: CodecParameters) -> None:
        if getattr(ctx, "is_open", False):
            return
        if not parameters.pix_fmt or parameters.width <= 0 or parameters.height <= 0:
            raise CaptureError(
                ErrorKind.INVALID_ARGUMENT,
                self.component,
                "open",
                f"picture geometry unresolved: {parameters.width}x{parameters.height} {parameters.pix_fmt}",
            )
        ctx.width = parameters.width
        ctx.height = parameters.height
        ctx.pix_fmt = parameters.pix_fmt
        if parameters.time_base is not None:
            ctx.time_base = parameters.time_base
        if parameters.sample_aspect_ratio:
            ctx.sample_aspect_ratio = parameters.sample_aspect_ratio
        if parameters.options:
            ctx.options = {str(k): str(v) for k, v in parameters.options.items()}

    def _on_open(self) -> None:
        super()._on_open()
        self._ended = False

    def _rebindable(self, parameters: CodecParameters) -> bool:
        # most still-image encoders cannot be flushed once drained
        return not self._ended and super()._rebindable(parameters)

    def _rebind(self, ctx: Any) -> None:
        pass

    def encode(self, frame: Frame) -> None:
        if not self.is_open:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "encode", "encoder is not open")
        if frame.format is None:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "encode", "frame format unresolved")
        try:
            packets = self.context.encode(frame.av_frame)
        except CaptureError:
            raise
        except Exception as exc:
            raise CaptureError.from_exception(exc, self.component, "encode") from exc
        self._pending.extend(packets or ())

    def encode_end(self) -> None:
        if not self.is_open or self._ended:
            return
        self._ended = True
        try:
            packets = self.context.encode(None)
        except Exception as exc:
            raise CaptureError.from_exception(exc, self.component, "encode_end") from exc
        self._pending.extend(packets or ())

    def receive_packet(self, packet: Packet) -> Outcome:
        if not self.is_open:
            return Outcome.failure(
                CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "receive_packet", "encoder is not open")
            )
        if self._pending:
            packet.bind(self._pending.popleft(), stream_index=0)
            return Outcome.success()
        if self._ended:
            return Outcome.end_of_stream()
        return Outcome.would_block()
