"""
rtsp-capture: snapshot capture agent for live network video streams.

Demuxes a network source with PyAV, decodes the video stream, converts each
picture to a still-image pixel format and persists one encoded image per
decoded frame.
"""

from rtsp_capture.errors import CaptureError, ErrorKind, Outcome, Status

__version__ = "0.1.0"

__all__ = ["CaptureError", "ErrorKind", "Outcome", "Status", "__version__"]
