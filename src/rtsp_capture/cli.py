"""
Command line entry point: `rtsp-capture <url>`.

Opens the stream, writes one still image per decoded frame until the frame
limit or end of stream, and exits 0 on graceful completion, 1 otherwise.
Settings come from `RTSP_CAPTURE_*` environment variables (see
`rtsp_capture.config`).
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from rtsp_capture.capture.capturer import Capturer
from rtsp_capture.config import CaptureConfig, load_capture_config
from rtsp_capture.errors import CaptureError

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def configure_logging(cfg: CaptureConfig) -> None:
    level = logging.DEBUG if cfg.debug else logging.INFO
    logging.basicConfig(
        level=level,
        format='[%(asctime)s] %(name)s - %(levelname)s - %(message)s',
    )
    configure_libav_logging(cfg.libav_log_level)


def configure_libav_logging(level_name: str) -> None:
    """Route FFmpeg's own log output through Python logging at `level_name`."""
    import av.logging  # lazy import

    level = getattr(av.logging, (level_name or "error").upper(), None)
    if not isinstance(level, int):
        logger.warning("unknown libav log level %r; using ERROR", level_name)
        level = av.logging.ERROR
    av.logging.set_level(level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='rtsp-capture',
        description='Capture still images from a live network video stream',
    )
    parser.add_argument('url', nargs='?', help='Stream URL, e.g. rtsp://camera/stream')
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.url:
        parser.print_usage(sys.stderr)
        return EXIT_FAILURE

    cfg = load_capture_config()
    configure_logging(cfg)

    try:
        capturer = Capturer(cfg)
        opened = capturer.open(args.url)
        if not opened.ok:
            return EXIT_FAILURE
        report = capturer.run(cfg.max_frames)
    except CaptureError as exc:
        logger.error("[EX] %s", exc)
        return EXIT_FAILURE
    return EXIT_SUCCESS if report.ok else EXIT_FAILURE


if __name__ == '__main__':
    raise SystemExit(main())
