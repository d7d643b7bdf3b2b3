"""Frame decoding, event normalization and reasoning segmentation."""

from open_chat.stream.frames import DONE_SENTINEL, Frame, FrameDecoder
from open_chat.stream.normalizer import EventNormalizer
from open_chat.stream.segmenter import display_parts, join_segments, segment

__all__ = [
    "DONE_SENTINEL",
    "EventNormalizer",
    "Frame",
    "FrameDecoder",
    "display_parts",
    "join_segments",
    "segment",
]
