"""Ownership-safe wrappers over PyAV packets, frames and codec sessions."""

from rtsp_capture.codec.converter import PixelConverter
from rtsp_capture.codec.decoder import Decoder
from rtsp_capture.codec.encoder import Encoder
from rtsp_capture.codec.frame import Frame
from rtsp_capture.codec.handle import OwnedHandle
from rtsp_capture.codec.packet import Packet
from rtsp_capture.codec.params import CodecParameters, MediaType, StreamDescriptor
from rtsp_capture.codec.session import CodecSession, SessionAction, SessionState

__all__ = [
    "CodecParameters",
    "CodecSession",
    "Decoder",
    "Encoder",
    "Frame",
    "MediaType",
    "OwnedHandle",
    "Packet",
    "PixelConverter",
    "SessionAction",
    "SessionState",
    "StreamDescriptor",
]
