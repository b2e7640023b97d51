from __future__ import annotations

"""
Closed error taxonomy for the capture pipeline.

FFmpeg reports failures as negative integers: POSIX errno values, or
four-character tags for library specific conditions. PyAV raises them as
`av.error.FFmpegError` subclasses whose `errno` holds the positive code.
Everything that crosses a component boundary here is a `CaptureError` with an
`ErrorKind` and a printable label instead of the raw number.
"""

import errno as _errno
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    WOULD_BLOCK = "would_block"
    END_OF_STREAM = "end_of_stream"
    INVALID_DATA = "invalid_data"
    INVALID_ARGUMENT = "invalid_argument"
    OPEN_ERROR = "open_error"
    CODEC_NOT_FOUND = "codec_not_found"
    NO_VIDEO_STREAM = "no_video_stream"
    RESOURCE_ERROR = "resource_error"
    IO_ERROR = "io_error"

    @property
    def transient(self) -> bool:
        return self is ErrorKind.WOULD_BLOCK


def _mktag(a: int | str, b: int | str, c: int | str, d: int | str) -> int:
    vals = [ord(x) if isinstance(x, str) else int(x) for x in (a, b, c, d)]
    return vals[0] | (vals[1] << 8) | (vals[2] << 16) | (vals[3] << 24)


# Positive forms of FFmpeg's FFERRTAG codes (libavutil/error.h).
AVERROR_EOF = _mktag("E", "O", "F", " ")
AVERROR_INVALIDDATA = _mktag("I", "N", "D", "A")
AVERROR_BUG = _mktag("B", "U", "G", "!")
AVERROR_EXIT = _mktag("E", "X", "I", "T")
AVERROR_UNKNOWN = _mktag("U", "N", "K", "N")
AVERROR_DECODER_NOT_FOUND = _mktag(0xF8, "D", "E", "C")
AVERROR_ENCODER_NOT_FOUND = _mktag(0xF8, "E", "N", "C")
AVERROR_DEMUXER_NOT_FOUND = _mktag(0xF8, "D", "E", "M")
AVERROR_PROTOCOL_NOT_FOUND = _mktag(0xF8, "P", "R", "O")
AVERROR_STREAM_NOT_FOUND = _mktag(0xF8, "S", "T", "R")
AVERROR_OPTION_NOT_FOUND = _mktag(0xF8, "O", "P", "T")
AVERROR_HTTP_BAD_REQUEST = _mktag(0xF8, "4", "0", "0")
AVERROR_HTTP_UNAUTHORIZED = _mktag(0xF8, "4", "0", "1")
AVERROR_HTTP_FORBIDDEN = _mktag(0xF8, "4", "0", "3")
AVERROR_HTTP_NOT_FOUND = _mktag(0xF8, "4", "0", "4")
AVERROR_HTTP_SERVER_ERROR = _mktag(0xF8, "5", "X", "X")

_TAG_LABELS: dict[int, str] = {
    AVERROR_EOF: "AVERROR_EOF",
    AVERROR_INVALIDDATA: "AVERROR_INVALIDDATA",
    AVERROR_BUG: "AVERROR_BUG",
    AVERROR_EXIT: "AVERROR_EXIT",
    AVERROR_UNKNOWN: "AVERROR_UNKNOWN",
    AVERROR_DECODER_NOT_FOUND: "AVERROR_DECODER_NOT_FOUND",
    AVERROR_ENCODER_NOT_FOUND: "AVERROR_ENCODER_NOT_FOUND",
    AVERROR_DEMUXER_NOT_FOUND: "AVERROR_DEMUXER_NOT_FOUND",
    AVERROR_PROTOCOL_NOT_FOUND: "AVERROR_PROTOCOL_NOT_FOUND",
    AVERROR_STREAM_NOT_FOUND: "AVERROR_STREAM_NOT_FOUND",
    AVERROR_OPTION_NOT_FOUND: "AVERROR_OPTION_NOT_FOUND",
    AVERROR_HTTP_BAD_REQUEST: "AVERROR_HTTP_BAD_REQUEST",
    AVERROR_HTTP_UNAUTHORIZED: "AVERROR_HTTP_UNAUTHORIZED",
    AVERROR_HTTP_FORBIDDEN: "AVERROR_HTTP_FORBIDDEN",
    AVERROR_HTTP_NOT_FOUND: "AVERROR_HTTP_NOT_FOUND",
    AVERROR_HTTP_SERVER_ERROR: "AVERROR_HTTP_SERVER_ERROR",
}

_CODE_KINDS: dict[int, ErrorKind] = {
    _errno.EAGAIN: ErrorKind.WOULD_BLOCK,
    AVERROR_EOF: ErrorKind.END_OF_STREAM,
    AVERROR_INVALIDDATA: ErrorKind.INVALID_DATA,
    _errno.EINVAL: ErrorKind.INVALID_ARGUMENT,
    _errno.ENOMEM: ErrorKind.RESOURCE_ERROR,
    AVERROR_DECODER_NOT_FOUND: ErrorKind.CODEC_NOT_FOUND,
    AVERROR_ENCODER_NOT_FOUND: ErrorKind.CODEC_NOT_FOUND,
}


def describe_code(code: Optional[int]) -> str:
    """Human-readable label for an FFmpeg code (either sign accepted)."""
    if code is None:
        return "-"
    code = abs(int(code))
    if code in _TAG_LABELS:
        return _TAG_LABELS[code]
    name = _errno.errorcode.get(code)
    if name is not None:
        return name
    if code < 0x01000000:
        return str(code)
    return hex(code)


def classify_code(code: Optional[int], default: ErrorKind = ErrorKind.IO_ERROR) -> ErrorKind:
    if code is None:
        return default
    return _CODE_KINDS.get(abs(int(code)), default)


class CaptureError(Exception):
    """A failure in one pipeline component, labelled for diagnostics."""

    def __init__(
        self,
        kind: ErrorKind,
        component: str,
        operation: str,
        message: str = "",
        code: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.component = component
        self.operation = operation
        self.message = message
        self.code = None if code is None else abs(int(code))
        super().__init__(str(self))

    @property
    def label(self) -> str:
        if self.code is None:
            return self.kind.name
        return f"{self.kind.name} ({describe_code(self.code)})"

    def __str__(self) -> str:
        text = f"{self.component}.{self.operation}: {self.label}"
        return f"{text}: {self.message}" if self.message else text

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        component: str,
        operation: str,
        default: ErrorKind = ErrorKind.IO_ERROR,
    ) -> "CaptureError":
        """Translate a PyAV (or OS) exception, keeping its numeric code."""
        if isinstance(exc, CaptureError):
            return exc
        code = getattr(exc, "errno", None)
        if not isinstance(code, int):
            code = None
        if isinstance(exc, MemoryError) and code is None:
            kind = ErrorKind.RESOURCE_ERROR
        else:
            kind = classify_code(code, default)
        message = getattr(exc, "strerror", None) or str(exc)
        return cls(kind, component, operation, str(message), code)


class Status(str, Enum):
    OK = "ok"
    WOULD_BLOCK = "would_block"
    END_OF_STREAM = "end_of_stream"
    ERROR = "error"


@dataclass(frozen=True)
class Outcome:
    """Non-raising result of a poll-style operation."""

    status: Status
    error: Optional[CaptureError] = None

    @property
    def ok(self) -> bool:
        return self.status is Status.OK

    @classmethod
    def success(cls) -> "Outcome":
        return _OK

    @classmethod
    def would_block(cls) -> "Outcome":
        return _WOULD_BLOCK

    @classmethod
    def end_of_stream(cls) -> "Outcome":
        return _END_OF_STREAM

    @classmethod
    def failure(cls, error: CaptureError) -> "Outcome":
        return cls(Status.ERROR, error)

    @classmethod
    def from_error(cls, error: CaptureError) -> "Outcome":
        """Map a classified error onto the poll status it stands for."""
        if error.kind is ErrorKind.WOULD_BLOCK:
            return _WOULD_BLOCK
        if error.kind is ErrorKind.END_OF_STREAM:
            return _END_OF_STREAM
        return cls(Status.ERROR, error)


_OK = Outcome(Status.OK)
_WOULD_BLOCK = Outcome(Status.WOULD_BLOCK)
_END_OF_STREAM = Outcome(Status.END_OF_STREAM)
