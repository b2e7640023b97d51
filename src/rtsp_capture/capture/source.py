from __future__ import annotations

"""
Network stream source backed by a PyAV input container.

The source owns the container, probes its streams once at open, selects the
first video stream, and hands out one demuxed packet per `read_next_packet()`
call. Reads are poll-style: they return an `Outcome` instead of raising, so a
transient EAGAIN from the network is reported as `WOULD_BLOCK` and the next
call simply resumes demuxing.
"""

import logging
from fractions import Fraction
from typing import Any, Callable, Iterator, Mapping, Optional, Tuple

from rtsp_capture.codec.handle import OwnedHandle
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import CodecParameters, MediaType, StreamDescriptor
from rtsp_capture.errors import CaptureError, ErrorKind, Outcome

logger = logging.getLogger(__name__)

Opener = Callable[..., Any]


def open_av_container(
    url: str,
    options: Mapping[str, str],
    timeout: Optional[Tuple[float, float]] = None,
) -> Any:
    import av  # lazy import

    return av.open(url, mode="r", options=dict(options), timeout=timeout)


def _close_container(container: Any) -> None:
    container.close()


class StreamSource:
    component = "source"

    def __init__(self, opener: Optional[Opener] = None) -> None:
        self._opener: Opener = opener or open_av_container
        self._handle: Optional[OwnedHandle[Any]] = None
        self._demuxer: Optional[Iterator[Any]] = None
        self._descriptors: tuple[StreamDescriptor, ...] = ()
        self._video_index = -1
        self._audio_index = -1
        self._playing = False
        self._exhausted = False
        self.url: Optional[str] = None
        self.packets_read = 0

    # --- open / close --------------------------------------------------------
    @property
    def is_open(self) -> bool:
        return self._handle is not None and not self._handle.released

    def open(
        self,
        url: str,
        options: Optional[Mapping[str, str]] = None,
        timeout: Optional[Tuple[float, float]] = None,
    ) -> None:
        if self.is_open:
            raise CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "open", "source is already open")
        opts = {str(k): str(v) for k, v in (options or {}).items()}
        logger.info("opening '%s'", url)
        logger.debug("source options: %s", opts)
        try:
            container = self._opener(url, opts, timeout)
        except MemoryError as exc:
            raise CaptureError.from_exception(exc, self.component, "open", ErrorKind.RESOURCE_ERROR) from exc
        except Exception as exc:
            err = CaptureError.from_exception(exc, self.component, "open", ErrorKind.OPEN_ERROR)
            raise CaptureError(ErrorKind.OPEN_ERROR, self.component, "open", err.message, err.code) from exc

        handle = OwnedHandle(container, _close_container, label="input-container")
        with handle:
            descriptors = tuple(self._describe(stream) for stream in container.streams)
            video = next((d for d in descriptors if d.media_type is MediaType.VIDEO), None)
            if video is None:
                raise CaptureError(
                    ErrorKind.NO_VIDEO_STREAM,
                    self.component,
                    "open",
                    f"{len(descriptors)} stream(s), none of them video",
                )
            audio = next((d for d in descriptors if d.media_type is MediaType.AUDIO), None)
            self._handle = handle.take()

        self.url = url
        self._descriptors = descriptors
        self._video_index = video.index
        self._audio_index = audio.index if audio is not None else -1
        self._exhausted = False
        params = video.parameters
        logger.info(
            "video stream #%d: %s %d x %d (%d stream(s) total)",
            video.index,
            params.codec_name,
            params.width,
            params.height,
            len(descriptors),
        )

    def close(self) -> None:
        self._demuxer = None
        if self._handle is not None:
            self._handle.release()
        self._handle = None
        self._playing = False

    # --- metadata ------------------------------------------------------------
    @property
    def descriptors(self) -> tuple[StreamDescriptor, ...]:
        return self._descriptors

    @property
    def video_stream_index(self) -> int:
        return self._video_index

    @property
    def audio_stream_index(self) -> int:
        return self._audio_index

    def codec_parameters_for(self, media_type: MediaType) -> Optional[CodecParameters]:
        for descriptor in self._descriptors:
            if descriptor.media_type is media_type:
                return descriptor.parameters
        return None

    def is_video_packet(self, packet: Packet) -> bool:
        return packet.stream_index >= 0 and packet.stream_index == self._video_index

    # --- transport control ---------------------------------------------------
    @property
    def playing(self) -> bool:
        return self._playing

    def play(self) -> None:
        # PyAV exposes no RTSP PLAY/PAUSE; delivery is gated locally instead
        if not self._playing:
            logger.debug("source: play")
        self._playing = True

    def pause(self) -> None:
        if self._playing:
            logger.debug("source: pause")
        self._playing = False

    # --- reading -------------------------------------------------------------
    def read_next_packet(self, packet: Packet) -> Outcome:
        packet.reset()
        if not self.is_open:
            return Outcome.failure(
                CaptureError(ErrorKind.INVALID_ARGUMENT, self.component, "read_next_packet", "source is not open")
            )
        if self._exhausted:
            return Outcome.end_of_stream()
        if not self._playing:
            return Outcome.would_block()
        if self._demuxer is None:
            self._demuxer = iter(self._handle.get().demux())
        try:
            av_packet = next(self._demuxer)
        except StopIteration:
            return self._finish()
        except Exception as exc:
            # A raising generator is finished; the next read starts a fresh one
            self._demuxer = None
            err = CaptureError.from_exception(exc, self.component, "read_next_packet")
            if err.kind is ErrorKind.END_OF_STREAM:
                return self._finish()
            if err.kind is ErrorKind.RESOURCE_ERROR:
                raise err from exc
            if err.kind is ErrorKind.WOULD_BLOCK:
                return Outcome.would_block()
            return Outcome.failure(err)
        if av_packet.size == 0:
            # demux() ends with untimed empty flush packets
            if av_packet.pts is None and av_packet.dts is None:
                return self._finish()
            return Outcome.would_block()
        packet.bind(av_packet)
        self.packets_read += 1
        return Outcome.success()

    def _finish(self) -> Outcome:
        self._demuxer = None
        self._exhausted = True
        logger.info("source: end of stream after %d packet(s)", self.packets_read)
        return Outcome.end_of_stream()

    @staticmethod
    def _describe(stream: Any) -> StreamDescriptor:
        media_type = MediaType.parse(getattr(stream, "type", None))
        time_base = getattr(stream, "time_base", None)
        time_base = Fraction(time_base) if time_base is not None else None
        ctx = getattr(stream, "codec_context", None)
        if ctx is None:
            # data/attachment streams carry no codec context
            params = CodecParameters(codec_name="none", media_type=media_type, time_base=time_base)
        else:
            params = CodecParameters.from_codec_context(ctx, media_type, time_base)
        return StreamDescriptor(index=int(stream.index), media_type=media_type, parameters=params)
