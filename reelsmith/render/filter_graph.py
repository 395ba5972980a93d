"""
Typed intermediate representation of an encoder filter graph.

Nodes are linear chains of filter operations with named input and output
ports; labels are the edges. Nothing here knows ffmpeg's textual syntax
except ``serialize()`` and ``to_ffmpeg_args()``, which are only called at the
encoder boundary.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

Scalar = Union[str, int, float]

# Characters that split filter arguments or chains and must be quoted
_SPECIAL_CHARS = (",", ";", "[", "]", "'")


def format_number(value: float) -> str:
    """Render a float with at most 4 decimals and no trailing zeros."""
    if isinstance(value, int):
        return str(value)
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def _format_value(value: Scalar) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float):
        return format_number(value)
    text = str(value)
    if any(ch in text for ch in _SPECIAL_CHARS):
        return "'" + text.replace("'", "\\'") + "'"
    return text


@dataclass
class FilterOp:
    """A single filter, e.g. ``scale=1920:1080`` or ``atempo=2.0``."""

    name: str
    args: list[Scalar] = field(default_factory=list)
    kwargs: dict[str, Scalar] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.kwargs.get(key, default)

    def serialize(self) -> str:
        params = [_format_value(a) for a in self.args]
        params += [f"{k}={_format_value(v)}" for k, v in self.kwargs.items()]
        if not params:
            return self.name
        return f"{self.name}=" + ":".join(params)


@dataclass
class FilterNode:
    """A chain of ops consuming ``inputs`` labels and producing ``outputs``.

    ``kind`` names the node's role (``normalize_video``, ``xfade``,
    ``music`` ...) so callers can inspect the graph without parsing text.
    """

    kind: str
    inputs: list[str]
    ops: list[FilterOp]
    outputs: list[str]

    def op_names(self) -> list[str]:
        return [op.name for op in self.ops]

    def find_ops(self, name: str) -> list[FilterOp]:
        return [op for op in self.ops if op.name == name]

    def serialize(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        chain = ",".join(op.serialize() for op in self.ops)
        return f"{ins}{chain}{outs}"


@dataclass
class GraphInput:
    """An encoder input file with options placed before its ``-i``."""

    path: str
    role: str  # clip, music, voice, watermark, text, concat_list
    options: list[str] = field(default_factory=list)
    index: Optional[int] = None  # clip or overlay index within its role

    def to_args(self) -> list[str]:
        return [*self.options, "-i", self.path]


@dataclass
class FilterGraph:
    """Complete export description handed to the encoder runner."""

    inputs: list[GraphInput] = field(default_factory=list)
    nodes: list[FilterNode] = field(default_factory=list)
    video_output: Optional[str] = None
    audio_output: Optional[str] = None
    stream_copy: bool = False
    concat_sources: list[str] = field(default_factory=list)  # stream-copy only
    total_duration: float = 0.0
    width: int = 0
    height: int = 0

    def add_input(self, path: str, role: str, options: Optional[list[str]] = None, index: Optional[int] = None) -> int:
        """Register an input and return its stream index."""
        self.inputs.append(GraphInput(path=path, role=role, options=options or [], index=index))
        return len(self.inputs) - 1

    def add(self, kind: str, inputs: list[str], ops: list[FilterOp], outputs: list[str]) -> FilterNode:
        node = FilterNode(kind=kind, inputs=inputs, ops=ops, outputs=outputs)
        self.nodes.append(node)
        return node

    def nodes_of(self, kind: str) -> list[FilterNode]:
        return [n for n in self.nodes if n.kind == kind]

    def produced_labels(self) -> set[str]:
        return {label for node in self.nodes for label in node.outputs}

    def consumed_labels(self) -> set[str]:
        return {label for node in self.nodes for label in node.inputs}

    def dangling_inputs(self) -> set[str]:
        """Consumed labels that are neither produced nor input streams."""
        input_streams = {f"{i}:v" for i in range(len(self.inputs))}
        input_streams |= {f"{i}:a" for i in range(len(self.inputs))}
        return self.consumed_labels() - self.produced_labels() - input_streams

    def serialize(self) -> str:
        return ";".join(node.serialize() for node in self.nodes)


def escape_concat_path(path: Union[str, Path]) -> str:
    """Quote a path for an ffmpeg concat-demuxer list file."""
    escaped = str(path).replace("'", "'\\''")
    return f"file '{escaped}'"


def write_concat_list(paths: list[str], list_path: Union[str, Path]) -> Path:
    """Write a concat-demuxer descriptor listing ``paths`` in order."""
    list_path = Path(list_path)
    with open(list_path, "w") as f:
        for p in paths:
            f.write(escape_concat_path(p) + "\n")
    return list_path


def to_ffmpeg_args(
    graph: FilterGraph,
    output_path: str,
    *,
    crf: int,
    preset: str,
    sample_rate: int,
    audio_bitrate: str = "192k",
    with_progress: bool = True,
    concat_list_path: Optional[str] = None,
) -> list[str]:
    """Serialize a graph into an ffmpeg argument list (without the binary).

    Stream-copy graphs read their clips through a concat-demuxer list file
    which the caller must have written to ``concat_list_path``.
    """
    args = ["-y", "-hide_banner", "-loglevel", "info"]
    if with_progress:
        args += ["-progress", "pipe:1", "-nostats"]

    if graph.stream_copy:
        if concat_list_path is None:
            raise ValueError("stream-copy graphs need a concat list path")
        args += ["-f", "concat", "-safe", "0", "-i", str(concat_list_path)]
        args += ["-c", "copy", "-movflags", "+faststart", output_path]
        return args

    for graph_input in graph.inputs:
        args += graph_input.to_args()

    args += [
        "-filter_complex", graph.serialize(),
        "-map", f"[{graph.video_output}]",
        "-map", f"[{graph.audio_output}]",
        "-c:v", "libx264",
        "-preset", preset,
        "-crf", str(crf),
        "-profile:v", "high",
        "-pix_fmt", "yuv420p",
        "-c:a", "aac",
        "-b:a", audio_bitrate,
        "-ar", str(sample_rate),
        "-ac", "2",
        "-movflags", "+faststart",
        output_path,
    ]
    return args
