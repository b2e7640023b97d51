"""Capture pipeline: stream source, snapshot encoding, sinks, orchestrator."""

from rtsp_capture.capture.capturer import CaptureState, Capturer, IdleBackoff, RunReport, StopReason
from rtsp_capture.capture.sink import FileFrameSink, FrameSink
from rtsp_capture.capture.snapshot import SNAPSHOT_FORMATS, SnapshotEncoder, SnapshotFormat, resolve_snapshot_format
from rtsp_capture.capture.source import StreamSource

__all__ = [
    "CaptureState",
    "Capturer",
    "FileFrameSink",
    "FrameSink",
    "IdleBackoff",
    "RunReport",
    "SNAPSHOT_FORMATS",
    "SnapshotEncoder",
    "SnapshotFormat",
    "StopReason",
    "StreamSource",
    "resolve_snapshot_format",
]
