from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class _Model(BaseModel):
    # Accept both the editor's camelCase payload and snake_case names
    model_config = ConfigDict(populate_by_name=True)


class Resolution(_Model):
    width: int = Field(default=1280, gt=0)
    height: int = Field(default=720, gt=0)

    @field_validator("width", "height")
    @classmethod
    def _even(cls, v: int) -> int:
        # libx264 with yuv420p rejects odd dimensions
        return max(2, v - (v % 2))


class Transform(_Model):
    """Pan/zoom applied to a clip inside the output frame.

    ``x``/``y`` move the image by that many output pixels; ``scale`` zooms
    in around the frame center.
    """

    scale: float = Field(default=1.0, gt=0)
    x: float = 0
    y: float = 0


class Clip(_Model):
    url: str
    type: Literal["image", "video"] = "image"
    transform: Transform = Field(default_factory=Transform)


class WordTiming(_Model):
    """Word timing in seconds relative to the segment start."""

    word: str
    start: float = Field(ge=0)
    end: float = Field(ge=0)


class CaptionStyle(_Model):
    font_family: str = Field(default="DejaVu Sans", validation_alias=AliasChoices("font_family", "fontFamily"))
    font_size: float = Field(default=40, gt=0, validation_alias=AliasChoices("font_size", "fontSize"))
    color: str = "#FFFFFF"
    position: Literal["top", "center", "bottom"] = "bottom"
    max_lines: int = Field(default=2, ge=1, validation_alias=AliasChoices("max_lines", "maxCaptionLines"))
    safe_area_width: float = Field(default=800, gt=0, validation_alias=AliasChoices("safe_area_width", "safeAreaWidth"))

    @field_validator("position", mode="before")
    @classmethod
    def _known_position(cls, v):
        # The editor also sends "custom"; burned-in captions fall back to bottom
        return v if v in ("top", "center", "bottom") else "bottom"


class Segment(_Model):
    clips: list[Clip] = Field(min_length=1, validation_alias=AliasChoices("clips", "media"))
    narration_url: str | None = Field(default=None, validation_alias=AliasChoices("narration_url", "audioUrl"))
    duration: float | None = Field(default=None, description="Declared duration in seconds")
    narration_text: str = ""
    word_timings: list[WordTiming] = Field(
        default_factory=list, validation_alias=AliasChoices("word_timings", "wordTimings")
    )
    caption_style: CaptionStyle = Field(
        default_factory=CaptionStyle, validation_alias=AliasChoices("caption_style", "textOverlayStyle")
    )
    transition_duration: float | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("transition_duration", "transitionDuration")
    )

    @field_validator("word_timings", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return v or []

    @field_validator("caption_style", mode="before")
    @classmethod
    def _none_is_default(cls, v):
        return v or {}


class AudioTrack(_Model):
    url: str
    start_time: float = Field(default=0, ge=0, validation_alias=AliasChoices("start_time", "startTime"))
    duration: float | None = Field(default=None, ge=0)
    volume: float = Field(default=1.0, ge=0)


class Timeline(_Model):
    title: str = "Untitled"
    segments: list[Segment] = Field(min_length=1)
    audio_tracks: list[AudioTrack] = Field(
        default_factory=list, validation_alias=AliasChoices("audio_tracks", "audioTracks")
    )
    resolution: Resolution = Field(default_factory=Resolution)

    @field_validator("audio_tracks", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return v or []

    @field_validator("resolution", mode="before")
    @classmethod
    def _none_is_default(cls, v):
        return v or {}
