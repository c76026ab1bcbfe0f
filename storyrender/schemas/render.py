from pydantic import AliasChoices, BaseModel, Field

from storyrender.schemas.timeline import CaptionStyle, WordTiming


class RenderSubmitResponse(BaseModel):
    job_id: str


class RenderStatusResponse(BaseModel):
    job_id: str
    status: str  # processing, completed, error
    stage: str | None = None
    error: str | None = None
    created_at: float


class CaptionPreviewRequest(BaseModel):
    model_config = {"populate_by_name": True}

    text: str
    duration: float = Field(gt=0)
    word_timings: list[WordTiming] | None = Field(
        default=None, validation_alias=AliasChoices("word_timings", "wordTimings")
    )
    caption_style: CaptionStyle = Field(
        default_factory=CaptionStyle, validation_alias=AliasChoices("caption_style", "textOverlayStyle")
    )


class CaptionCueResponse(BaseModel):
    start: float
    end: float
    text: str


class CaptionPreviewResponse(BaseModel):
    cues: list[CaptionCueResponse]
    word_timings: list[WordTiming]
    estimated: bool  # True when timings were estimated from the text
    char_budget: float
