"""filter_complex builders.

Each helper returns one filter chain in the form "[in]filter,filter[out]".
Chains are joined with ";" into a filter graph.
"""


def pad(label: str) -> str:
    """Wrap a stream specifier or label in brackets: "0:v" -> "[0:v]"."""
    return label if label.startswith("[") else f"[{label}]"


def chain(inputs: list[str], filters: list[str], output: str) -> str:
    return "".join(pad(i) for i in inputs) + ",".join(filters) + pad(output)


def graph(chains: list[str]) -> str:
    return ";".join(c for c in chains if c)


def fit_to_canvas(width: int, height: int) -> list[str]:
    """Scale preserving aspect ratio, then letterbox/pillarbox to exactly width x height."""
    return [
        f"scale={width}:{height}:force_original_aspect_ratio=decrease",
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        "setsar=1",
    ]


def scale_exact(width: int, height: int) -> list[str]:
    return [f"scale={width}:{height}", "setsar=1"]


def hold_last_frame(seconds: float) -> str:
    """Extend a video stream by repeating its last frame."""
    return f"tpad=stop_mode=clone:stop_duration={seconds:.6f}"


def pad_audio(whole_duration: float) -> str:
    """Extend an audio stream with silence up to whole_duration seconds."""
    return f"apad=whole_dur={whole_duration:.6f}"


def overlay_at(x: int, y: int) -> str:
    # eof_action=pass lets the base continue if the overlay ends first.
    return f"overlay=x={x}:y={y}:eof_action=pass"


def volume(level: float) -> str:
    return f"volume={level:.4f}"


def amix(inputs: int, normalize: bool = True, duration: str = "longest") -> str:
    return f"amix=inputs={inputs}:duration={duration}:normalize={1 if normalize else 0}"
