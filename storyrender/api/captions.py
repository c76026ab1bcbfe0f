"""Caption preview endpoint.

Runs the same cue compilation the renderer burns in, so the editor can show
captions exactly as they will appear in the output.
"""

from fastapi import APIRouter

from storyrender.config import get_settings
from storyrender.render.subtitles import char_budget, compile_captions
from storyrender.render.timing import estimate_word_timings
from storyrender.schemas.render import CaptionCueResponse, CaptionPreviewRequest, CaptionPreviewResponse

router = APIRouter()


@router.post("/captions/preview", response_model=CaptionPreviewResponse)
async def preview_captions(request: CaptionPreviewRequest) -> CaptionPreviewResponse:
    settings = get_settings()

    estimated = not request.word_timings
    timings = estimate_word_timings(request.text, request.duration) if estimated else request.word_timings

    cues = compile_captions(
        request.text,
        timings,
        request.duration,
        request.caption_style,
        merge_threshold=settings.caption_merge_threshold_s,
    )
    return CaptionPreviewResponse(
        cues=[CaptionCueResponse(**cue.to_dict()) for cue in cues],
        word_timings=timings,
        estimated=estimated,
        char_budget=char_budget(request.caption_style),
    )
