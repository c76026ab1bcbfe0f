from storyrender.render.audio_mixer import AudioMixer
from storyrender.render.encoder import EncodeSpec, FFmpegEncoder
from storyrender.render.filter_graph import FilterGraphBuilder
from storyrender.render.pipeline import RenderPipeline

__all__ = [
    "RenderPipeline",
    "FilterGraphBuilder",
    "AudioMixer",
    "EncodeSpec",
    "FFmpegEncoder",
]
