from __future__ import annotations

from fractions import Fraction
from typing import Any, Optional

import numpy as np


class Frame:
    """Reusable holder for one decoded or converted picture.

    One holder is kept per role (decode target, conversion target) and
    re-bound every iteration. An unbound holder has no pixel format.
    """

    __slots__ = ("_frame",)

    def __init__(self, frame: Optional[Any] = None) -> None:
        self._frame = frame

    @classmethod
    def allocate(cls, pix_fmt: str, width: int, height: int) -> "Frame":
        import av  # lazy import

        return cls(av.VideoFrame(int(width), int(height), pix_fmt))

    @classmethod
    def from_ndarray(cls, array: np.ndarray, pix_fmt: str = "rgb24") -> "Frame":
        import av  # lazy import

        return cls(av.VideoFrame.from_ndarray(array, format=pix_fmt))

    def bind(self, frame: Any) -> None:
        self._frame = frame

    def reset(self) -> None:
        self._frame = None

    @property
    def is_bound(self) -> bool:
        return self._frame is not None

    @property
    def av_frame(self) -> Any:
        if self._frame is None:
            raise RuntimeError("frame is not bound")
        return self._frame

    @property
    def width(self) -> int:
        return int(self._frame.width) if self._frame is not None else 0

    @property
    def height(self) -> int:
        return int(self._frame.height) if self._frame is not None else 0

    @property
    def format(self) -> Optional[str]:
        if self._frame is None:
            return None
        fmt = getattr(self._frame, "format", None)
        name = getattr(fmt, "name", fmt)
        return str(name) if name else None

    @property
    def sample_aspect_ratio(self) -> Optional[Fraction]:
        if self._frame is None:
            return None
        sar = getattr(self._frame, "sample_aspect_ratio", None)
        return Fraction(sar) if sar else None

    def to_ndarray(self, pix_fmt: Optional[str] = None) -> np.ndarray:
        if pix_fmt is None:
            return self.av_frame.to_ndarray()
        return self.av_frame.to_ndarray(format=pix_fmt)

    def __repr__(self) -> str:
        return f"Frame({self.width}x{self.height}, {self.format})"
