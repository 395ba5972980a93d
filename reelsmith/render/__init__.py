from reelsmith.render.encoder import EncoderRunner
from reelsmith.render.filter_graph import FilterGraph, FilterNode, FilterOp, to_ffmpeg_args
from reelsmith.render.graph_builder import FilterGraphBuilder, ResolvedAssets, ResolvedClip
from reelsmith.render.job_engine import JobEngine
from reelsmith.render.text_renderer import TextRenderer

__all__ = [
    "EncoderRunner",
    "FilterGraph",
    "FilterGraphBuilder",
    "FilterNode",
    "FilterOp",
    "JobEngine",
    "ResolvedAssets",
    "ResolvedClip",
    "TextRenderer",
    "to_ffmpeg_args",
]
