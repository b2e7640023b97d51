"""Codec parameter and stream descriptor records shared by sessions and sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from fractions import Fraction
from typing import Any, Mapping, Optional


class MediaType(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"
    DATA = "data"
    SUBTITLE = "subtitle"
    ATTACHMENT = "attachment"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "MediaType":
        try:
            return cls(str(value or "").lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class CodecParameters:
    """Negotiated parameters for one codec session.

    `codec_name` is the codec identity: two parameter sets with the same name
    can share a session, different names cannot.
    """

    codec_name: str
    media_type: MediaType = MediaType.VIDEO
    width: int = 0
    height: int = 0
    pix_fmt: Optional[str] = None
    extradata: Optional[bytes] = None
    time_base: Optional[Fraction] = None
    sample_aspect_ratio: Optional[Fraction] = None
    options: Mapping[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return self.codec_name

    @classmethod
    def from_codec_context(
        cls,
        ctx: Any,
        media_type: MediaType,
        time_base: Optional[Fraction] = None,
    ) -> "CodecParameters":
        extradata = getattr(ctx, "extradata", None)
        video = media_type is MediaType.VIDEO
        sar = getattr(ctx, "sample_aspect_ratio", None) if video else None
        return cls(
            codec_name=str(ctx.name),
            media_type=media_type,
            width=int(getattr(ctx, "width", 0) or 0),
            height=int(getattr(ctx, "height", 0) or 0),
            pix_fmt=getattr(ctx, "pix_fmt", None) if video else None,
            extradata=bytes(extradata) if extradata else None,
            time_base=time_base,
            sample_aspect_ratio=Fraction(sar) if sar else None,
        )

    @classmethod
    def for_picture(
        cls,
        codec_name: str,
        width: int,
        height: int,
        pix_fmt: str,
        options: Optional[Mapping[str, str]] = None,
        sample_aspect_ratio: Optional[Fraction] = None,
    ) -> "CodecParameters":
        return cls(
            codec_name=codec_name,
            media_type=MediaType.VIDEO,
            width=int(width),
            height=int(height),
            pix_fmt=pix_fmt,
            time_base=Fraction(1, 1),
            sample_aspect_ratio=sample_aspect_ratio,
            options=dict(options or {}),
        )


@dataclass(frozen=True)
class StreamDescriptor:
    index: int
    media_type: MediaType
    parameters: CodecParameters
