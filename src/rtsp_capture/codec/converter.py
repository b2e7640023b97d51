from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.handle import OwnedHandle
from rtsp_capture.errors import CaptureError, ErrorKind

logger = logging.getLogger(__name__)

# (src width, src height, src format, dst width, dst height, dst format)
ConversionKey = tuple[int, int, str, int, int, str]


def create_av_reformatter() -> Any:
    from av.video.reformatter import VideoReformatter  # lazy import

    return VideoReformatter()


class PixelConverter:
    """Pixel format conversion with a cached swscale context.

    The context is keyed by source and destination geometry and format. It is
    rebuilt when any of them changes between calls and reused otherwise. The
    output holder is reused too, so callers must consume the returned frame
    before the next `convert()`.
    """

    component = "converter"

    def __init__(
        self,
        factory: Optional[Callable[[], Any]] = None,
        interpolation: str = "BICUBIC",
    ) -> None:
        self._factory = factory or create_av_reformatter
        self._interpolation = interpolation
        self._handle: Optional[OwnedHandle[Any]] = None
        self._key: Optional[ConversionKey] = None
        self._target = Frame()
        self.context_builds = 0

    @property
    def key(self) -> Optional[ConversionKey]:
        return self._key

    def convert(self, source: Frame, destination_format: Optional[str]) -> Frame:
        src_format = source.format
        if src_format is None or not destination_format:
            raise CaptureError(
                ErrorKind.INVALID_ARGUMENT,
                self.component,
                "convert",
                f"unresolved pixel format: {src_format} -> {destination_format}",
            )
        width, height = source.width, source.height
        key: ConversionKey = (width, height, src_format, width, height, str(destination_format))
        ctx = self._context_for(key)
        try:
            out = ctx.reformat(
                source.av_frame,
                width=width,
                height=height,
                format=destination_format,
                interpolation=self._interpolation,
            )
        except MemoryError as exc:
            raise CaptureError.from_exception(exc, self.component, "convert", ErrorKind.RESOURCE_ERROR) from exc
        except Exception as exc:
            raise CaptureError.from_exception(exc, self.component, "convert", ErrorKind.INVALID_ARGUMENT) from exc
        self._target.bind(out)
        return self._target

    def close(self) -> None:
        if self._handle is not None:
            self._handle.release()
        self._handle = None
        self._key = None
        self._target.reset()

    def _context_for(self, key: ConversionKey) -> Any:
        if self._handle is not None and self._key == key:
            return self._handle.get()
        if self._handle is not None:
            logger.debug("converter: parameters changed %s -> %s; rebuilding context", self._key, key)
            self._handle.release()
        self._handle = OwnedHandle(self._factory(), label="conversion-context")
        self._key = key
        self.context_builds += 1
        return self._handle.get()
