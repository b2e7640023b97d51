from __future__ import annotations

"""Capture configuration resolved from the environment.

All env var parsing happens here so the pipeline depends on a structured,
immutable config rather than scattered `os.getenv` calls.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from rtsp_capture.utils.env import env_bool, env_float, env_int, env_json_object, env_str

logger = logging.getLogger(__name__)

ENV_PREFIX = "RTSP_CAPTURE_"


@dataclass(frozen=True)
class CaptureConfig:
    """Top-level capture configuration values."""

    # Source (passed through to the demuxer as string options)
    transport: str = "tcp"
    socket_timeout_us: int = 10_000_000
    allowed_media_types: str = "video"
    extra_source_options: Mapping[str, str] = field(default_factory=dict)
    open_timeout_s: float = 10.0
    read_timeout_s: float = 10.0

    # Output
    output_dir: str = "."
    file_prefix: str = "frame"
    image_format: str = "jpeg"
    max_frames: int = 1000

    # Loop behaviour
    idle_sleep_ms: float = 5.0
    skip_invalid_packets: bool = False

    # Diagnostics
    debug: bool = False
    libav_log_level: str = "error"

    def source_options(self) -> Dict[str, str]:
        opts: Dict[str, str] = {}
        if self.transport:
            opts["rtsp_transport"] = self.transport
        if self.socket_timeout_us > 0:
            opts["timeout"] = str(self.socket_timeout_us)
        if self.allowed_media_types:
            opts["allowed_media_types"] = self.allowed_media_types
        opts.update({str(k): str(v) for k, v in self.extra_source_options.items()})
        return opts

    def source_timeouts(self) -> Optional[Tuple[float, float]]:
        if self.open_timeout_s <= 0 and self.read_timeout_s <= 0:
            return None
        return (max(0.0, self.open_timeout_s), max(0.0, self.read_timeout_s))

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_capture_config(env: Optional[Mapping[str, str]] = None) -> CaptureConfig:
    """Read capture settings from the provided environment mapping."""

    def key(name: str) -> str:
        return ENV_PREFIX + name

    defaults = CaptureConfig()
    extra = {
        str(k): str(v)
        for k, v in env_json_object(key("SOURCE_OPTIONS"), env=env).items()
        if v is not None
    }
    cfg = CaptureConfig(
        transport=(env_str(key("TRANSPORT"), defaults.transport, env=env) or "").lower(),
        socket_timeout_us=max(0, env_int(key("SOCKET_TIMEOUT_US"), defaults.socket_timeout_us, env=env)),
        allowed_media_types=env_str(key("ALLOWED_MEDIA_TYPES"), defaults.allowed_media_types, env=env) or "",
        extra_source_options=extra,
        open_timeout_s=env_float(key("OPEN_TIMEOUT_S"), defaults.open_timeout_s, env=env),
        read_timeout_s=env_float(key("READ_TIMEOUT_S"), defaults.read_timeout_s, env=env),
        output_dir=env_str(key("OUTPUT_DIR"), defaults.output_dir, env=env) or ".",
        file_prefix=env_str(key("FILE_PREFIX"), defaults.file_prefix, env=env) or "",
        image_format=(env_str(key("IMAGE_FORMAT"), defaults.image_format, env=env) or "jpeg").lower(),
        max_frames=max(0, env_int(key("MAX_FRAMES"), defaults.max_frames, env=env)),
        idle_sleep_ms=max(0.0, env_float(key("IDLE_SLEEP_MS"), defaults.idle_sleep_ms, env=env)),
        skip_invalid_packets=env_bool(key("SKIP_INVALID_PACKETS"), defaults.skip_invalid_packets, env=env),
        debug=env_bool(key("DEBUG"), defaults.debug, env=env),
        libav_log_level=(env_str(key("LIBAV_LOG_LEVEL"), defaults.libav_log_level, env=env) or "error").lower(),
    )
    logger.debug("Resolved CaptureConfig: %s", cfg)
    return cfg
