"""Streaming components: frame decoding, delta assembly and publish throttling."""

from .decoder import Frame, FrameDecoder
from .assembler import Delta, DeltaAssembler
from .throttle import UpdateThrottler

__all__ = ["Frame", "FrameDecoder", "Delta", "DeltaAssembler", "UpdateThrottler"]
