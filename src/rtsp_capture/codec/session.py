from __future__ import annotations

"""
Codec session lifecycle shared by the decoder and the encoder.

A session owns at most one PyAV codec context through an `OwnedHandle`.
`open(parameters)` picks its action from a fixed transition table:

    no session                    -> allocate, bind, open
    session open, other identity  -> release old, allocate new, bind, open
    session open, same identity   -> rebind, open

An opened FFmpeg context cannot take new geometry or extradata, so a rebind
only happens when the bound parameters still hold; it flushes the context
to clear any drain state. Anything else on the same identity is planned as
a replacement.

Contexts are produced by an injectable factory so the lifecycle can be
exercised without FFmpeg.
"""

import logging
from collections import deque
from enum import Enum
from typing import Any, Callable, Optional

from rtsp_capture.codec.handle import OwnedHandle
from rtsp_capture.codec.params import CodecParameters
from rtsp_capture.errors import CaptureError, ErrorKind

logger = logging.getLogger(__name__)

ContextFactory = Callable[[CodecParameters, str], Any]


class SessionState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"


class SessionAction(str, Enum):
    ALLOCATE = "allocate"
    REPLACE = "replace"
    REBIND = "rebind"


# (has session, identity matches) -> action
TRANSITIONS: dict[tuple[bool, bool], SessionAction] = {
    (False, False): SessionAction.ALLOCATE,
    (False, True): SessionAction.ALLOCATE,
    (True, False): SessionAction.REPLACE,
    (True, True): SessionAction.REBIND,
}


def create_av_context(parameters: CodecParameters, mode: str) -> Any:
    """Allocate a PyAV codec context for `parameters.codec_name`.

    Raises CODEC_NOT_FOUND when FFmpeg has no codec registered under that name
    for the requested direction.
    """
    import av  # lazy import

    operation = "open"
    component = "decoder" if mode == "r" else "encoder"
    try:
        codec = av.Codec(parameters.codec_name, mode)
    except ValueError as exc:
        # UnknownCodecError subclasses ValueError
        raise CaptureError(
            ErrorKind.CODEC_NOT_FOUND,
            component,
            operation,
            f"no {component} registered for {parameters.codec_name!r}",
        ) from exc
    try:
        return av.CodecContext.create(codec, mode)
    except MemoryError as exc:
        raise CaptureError.from_exception(exc, component, operation, ErrorKind.RESOURCE_ERROR) from exc


class CodecSession:
    """Open/closed codec session with a pending-output queue."""

    component = "codec"
    mode = "r"

    def __init__(self, factory: Optional[ContextFactory] = None) -> None:
        self._factory: ContextFactory = factory or create_av_context
        self._handle: Optional[OwnedHandle[Any]] = None
        self._parameters: Optional[CodecParameters] = None
        self._state = SessionState.CLOSED
        self._pending: deque[Any] = deque()
        self.sessions_allocated = 0
        self.sessions_released = 0

    # --- lifecycle -----------------------------------------------------------
    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SessionState.OPEN

    @property
    def parameters(self) -> Optional[CodecParameters]:
        return self._parameters

    @property
    def live_sessions(self) -> int:
        return self.sessions_allocated - self.sessions_released

    @property
    def context(self) -> Any:
        if self._handle is None or self._handle.released:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "context", "session is not open")
        return self._handle.get()

    def plan(self, parameters: CodecParameters) -> SessionAction:
        has_session = self._handle is not None and not self._handle.released
        same = has_session and self._bound_identity() == parameters.identity
        action = TRANSITIONS[(has_session, same)]
        if action is SessionAction.REBIND and not self._rebindable(parameters):
            return SessionAction.REPLACE
        return action

    def open(self, parameters: CodecParameters) -> SessionAction:
        action = self.plan(parameters)
        if action is SessionAction.REPLACE:
            logger.info(
                "%s: replacing %s session with %s (%dx%d %s)",
                self.component,
                self._bound_identity(),
                parameters.identity,
                parameters.width,
                parameters.height,
                parameters.pix_fmt,
            )
            self._release_session()
        if action is not SessionAction.REBIND:
            self._allocate(parameters)
        ctx = self.context
        try:
            if action is SessionAction.REBIND:
                self._rebind(ctx)
            self._bind(ctx, parameters)
            ctx.open(strict=False)
        except CaptureError:
            self._release_session()
            raise
        except Exception as exc:
            self._release_session()
            err = CaptureError.from_exception(exc, self.component, "open", ErrorKind.OPEN_ERROR)
            if err.kind is not ErrorKind.RESOURCE_ERROR:
                err = CaptureError(ErrorKind.OPEN_ERROR, self.component, "open", err.message, err.code)
            raise err from exc
        self._parameters = parameters
        self._state = SessionState.OPEN
        self._on_open()
        logger.debug("%s: %s session for %s", self.component, action.value, parameters.identity)
        return action

    def close(self) -> None:
        self._release_session()
        self._parameters = None
        self._state = SessionState.CLOSED

    def __enter__(self) -> "CodecSession":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # --- hooks ---------------------------------------------------------------
    def _bind(self, ctx: Any, parameters: CodecParameters) -> None:
        raise NotImplementedError

    def _on_open(self) -> None:
        self._pending.clear()

    def _rebindable(self, parameters: CodecParameters) -> bool:
        ctx = self.context
        if not getattr(ctx, "is_open", False) or self._parameters is None:
            return True
        return parameters == self._parameters

    def _rebind(self, ctx: Any) -> None:
        flush = getattr(ctx, "flush_buffers", None)
        if flush is not None and getattr(ctx, "is_open", False):
            flush()

    # --- internals -----------------------------------------------------------
    def _bound_identity(self) -> Optional[str]:
        if self._handle is None or self._handle.released:
            return None
        return str(getattr(self._handle.get(), "name", "") or "") or None

    def _allocate(self, parameters: CodecParameters) -> None:
        ctx = self._factory(parameters, self.mode)
        self._handle = OwnedHandle(ctx, self._count_release, label=f"{self.component}:{parameters.identity}")
        self.sessions_allocated += 1

    def _count_release(self, _ctx: Any) -> None:
        self.sessions_released += 1

    def _release_session(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.release()
        self._pending.clear()
        self._state = SessionState.CLOSED
