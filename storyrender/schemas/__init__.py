from storyrender.schemas.render import RenderStatusResponse, RenderSubmitResponse
from storyrender.schemas.timeline import AudioTrack, CaptionStyle, Clip, Segment, Timeline, WordTiming

__all__ = [
    "Timeline",
    "Segment",
    "Clip",
    "AudioTrack",
    "CaptionStyle",
    "WordTiming",
    "RenderSubmitResponse",
    "RenderStatusResponse",
]
