from __future__ import annotations

from typing import Any, Optional


class Packet:
    """Reusable holder for one compressed unit and its stream index.

    The wrapped PyAV packet is valid from `bind()` until `reset()`; the
    holder itself is allocated once and reused across reads.
    """

    __slots__ = ("_packet", "_stream_index")

    def __init__(self) -> None:
        self._packet: Optional[Any] = None
        self._stream_index = -1

    def bind(self, packet: Any, stream_index: Optional[int] = None) -> None:
        self._packet = packet
        if stream_index is None:
            stream_index = int(getattr(packet, "stream_index", -1))
        self._stream_index = int(stream_index)

    def reset(self) -> None:
        self._packet = None
        self._stream_index = -1

    @property
    def is_bound(self) -> bool:
        return self._packet is not None

    @property
    def av_packet(self) -> Any:
        if self._packet is None:
            raise RuntimeError("packet is not bound")
        return self._packet

    @property
    def stream_index(self) -> int:
        return self._stream_index

    @property
    def size(self) -> int:
        if self._packet is None:
            return 0
        return int(self._packet.size)

    @property
    def data(self) -> bytes:
        if self._packet is None:
            return b""
        return bytes(self._packet)

    def __repr__(self) -> str:
        return f"Packet(stream={self._stream_index}, size={self.size})"
