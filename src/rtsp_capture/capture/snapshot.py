from __future__ import annotations

"""Single-frame still-image encoding for decoded pictures."""

import logging
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Callable, Mapping, Optional

from rtsp_capture.codec.converter import PixelConverter
from rtsp_capture.codec.encoder import Encoder
from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import CodecParameters
from rtsp_capture.errors import CaptureError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapshotFormat:
    name: str
    codec_name: str
    pix_fmt: str
    extension: str
    options: Mapping[str, str] = field(default_factory=dict)


# Encoder-wide AVOption; png clamps it to its 0-9 zlib range
_STILL_OPTIONS = {"compression_level": "100"}

SNAPSHOT_FORMATS: dict[str, SnapshotFormat] = {
    "jpeg": SnapshotFormat("jpeg", "mjpeg", "yuvj422p", ".jpg", _STILL_OPTIONS),
    "png": SnapshotFormat("png", "png", "rgb24", ".png", _STILL_OPTIONS),
    "ppm": SnapshotFormat("ppm", "ppm", "rgb24", ".ppm", _STILL_OPTIONS),
}

_ALIASES = {"jpg": "jpeg", "mjpeg": "jpeg"}


def resolve_snapshot_format(name: str) -> SnapshotFormat:
    key = (name or "").strip().lower()
    key = _ALIASES.get(key, key)
    try:
        return SNAPSHOT_FORMATS[key]
    except KeyError:
        raise CaptureError(
            ErrorKind.INVALID_ARGUMENT,
            "snapshot",
            "resolve_format",
            f"unknown image format {name!r}; expected one of {sorted(SNAPSHOT_FORMATS)}",
        ) from None


class SnapshotEncoder:
    """Converts a decoded frame to the format's pixel layout and encodes it.

    The converter is long-lived so its conversion context is shared across
    frames of identical geometry. Each snapshot gets a fresh single-shot
    encoder sized to the picture.
    """

    def __init__(
        self,
        fmt: SnapshotFormat,
        converter: Optional[PixelConverter] = None,
        encoder_factory: Callable[[], Encoder] = Encoder,
    ) -> None:
        self.format = fmt
        self._converter = converter or PixelConverter()
        self._encoder_factory = encoder_factory
        self._packet = Packet()

    @property
    def extension(self) -> str:
        return self.format.extension

    @property
    def converter(self) -> PixelConverter:
        return self._converter

    def encode(self, frame: Frame, sample_aspect_ratio: Optional[Fraction] = None) -> bytes:
        """Encode one picture; the frame's own aspect ratio wins over the fallback."""
        sar = frame.sample_aspect_ratio or sample_aspect_ratio
        picture = self._converter.convert(frame, self.format.pix_fmt)
        params = CodecParameters.for_picture(
            self.format.codec_name,
            picture.width,
            picture.height,
            self.format.pix_fmt,
            self.format.options,
            sample_aspect_ratio=sar,
        )
        with self._encoder_factory() as encoder:
            encoder.open(params)
            encoder.encode(picture)
            outcome = encoder.receive_packet(self._packet)
            if not outcome.ok:
                if outcome.error is not None:
                    raise outcome.error
                raise CaptureError(
                    ErrorKind.IO_ERROR,
                    "encoder",
                    "receive_packet",
                    f"no packet after one frame ({outcome.status.value})",
                )
            try:
                return self._packet.data
            finally:
                self._packet.reset()

    def close(self) -> None:
        self._converter.close()
