"""Audio handling for base + overlay composites.

The audio layout of a composite is decided from what the two inputs
actually carry (probed, with muted tracks counted as silent). Each layout
is then attempted with an ordered list of strategies; a strategy is only
tried when the previous one made ffmpeg fail.

Input indices in every plan: 0 = base, 1 = overlay, 2 = generated silence.
"""

from dataclasses import dataclass, field
from enum import Enum

from clipforge.render import filters

BASE_INPUT = 0
OVERLAY_INPUT = 1
SILENCE_INPUT = 2


class AudioLayout(str, Enum):
    BOTH_AUDIO = "both_audio"
    BASE_ONLY = "base_only"
    OVERLAY_ONLY = "overlay_only"
    SILENT = "silent"

    @classmethod
    def from_presence(cls, base_has_audio: bool, overlay_has_audio: bool) -> "AudioLayout":
        if base_has_audio and overlay_has_audio:
            return cls.BOTH_AUDIO
        if base_has_audio:
            return cls.BASE_ONLY
        if overlay_has_audio:
            return cls.OVERLAY_ONLY
        return cls.SILENT

    @property
    def has_base(self) -> bool:
        return self in (AudioLayout.BOTH_AUDIO, AudioLayout.BASE_ONLY)

    @property
    def has_overlay(self) -> bool:
        return self in (AudioLayout.BOTH_AUDIO, AudioLayout.OVERLAY_ONLY)


class AttemptStrategy(str, Enum):
    PRIMARY = "primary"
    SILENCE_FALLBACK = "silence_fallback"
    VIDEO_ONLY = "video_only"


ATTEMPT_ORDER: tuple[AttemptStrategy, ...] = (
    AttemptStrategy.PRIMARY,
    AttemptStrategy.SILENCE_FALLBACK,
    AttemptStrategy.VIDEO_ONLY,
)


@dataclass(frozen=True)
class AudioPlan:
    """Filter chains plus the -map target that produce the composite's audio."""

    strategy: AttemptStrategy
    layout: AudioLayout
    audio_map: str
    chains: list[str] = field(default_factory=list)
    needs_silence: bool = False


def _primary(layout: AudioLayout, base_volume: float, overlay_volume: float) -> AudioPlan:
    strategy = AttemptStrategy.PRIMARY
    if layout is AudioLayout.BOTH_AUDIO:
        return AudioPlan(
            strategy=strategy,
            layout=layout,
            audio_map="[a]",
            chains=[
                filters.chain([f"{BASE_INPUT}:a"], [filters.volume(base_volume)], "a0"),
                filters.chain([f"{OVERLAY_INPUT}:a"], [filters.volume(overlay_volume)], "a1"),
                filters.chain(["a0", "a1"], [filters.amix(2, normalize=True)], "a"),
            ],
        )
    if layout is AudioLayout.BASE_ONLY:
        return AudioPlan(
            strategy=strategy,
            layout=layout,
            audio_map="[a]",
            chains=[filters.chain([f"{BASE_INPUT}:a"], [filters.volume(base_volume)], "a")],
        )
    if layout is AudioLayout.OVERLAY_ONLY:
        return AudioPlan(
            strategy=strategy,
            layout=layout,
            audio_map="[a]",
            chains=[filters.chain([f"{OVERLAY_INPUT}:a"], [filters.volume(overlay_volume)], "a")],
        )
    return AudioPlan(
        strategy=strategy,
        layout=layout,
        audio_map=f"{SILENCE_INPUT}:a",
        needs_silence=True,
    )


def _silence_fallback(layout: AudioLayout, base_volume: float, overlay_volume: float) -> AudioPlan:
    """Mix whatever audio exists on top of a generated silent bed.

    The silent bed fixes the output length and sample format, which covers
    sources whose audio is shorter than the segment or oddly laid out.
    """
    chains: list[str] = []
    mix_inputs = [f"{SILENCE_INPUT}:a"]
    if layout.has_base:
        chains.append(filters.chain([f"{BASE_INPUT}:a"], [filters.volume(base_volume)], "a0"))
        mix_inputs.append("a0")
    if layout.has_overlay:
        chains.append(filters.chain([f"{OVERLAY_INPUT}:a"], [filters.volume(overlay_volume)], "a1"))
        mix_inputs.append("a1")

    if len(mix_inputs) == 1:
        return AudioPlan(
            strategy=AttemptStrategy.SILENCE_FALLBACK,
            layout=layout,
            audio_map=f"{SILENCE_INPUT}:a",
            needs_silence=True,
        )

    chains.append(
        filters.chain(mix_inputs, [filters.amix(len(mix_inputs), normalize=False, duration="first")], "a")
    )
    return AudioPlan(
        strategy=AttemptStrategy.SILENCE_FALLBACK,
        layout=layout,
        audio_map="[a]",
        chains=chains,
        needs_silence=True,
    )


def _video_only(layout: AudioLayout, base_volume: float, overlay_volume: float) -> AudioPlan:
    """Ignore every source audio stream; the segment gets silence."""
    return AudioPlan(
        strategy=AttemptStrategy.VIDEO_ONLY,
        layout=layout,
        audio_map=f"{SILENCE_INPUT}:a",
        needs_silence=True,
    )


_BUILDERS = {
    AttemptStrategy.PRIMARY: _primary,
    AttemptStrategy.SILENCE_FALLBACK: _silence_fallback,
    AttemptStrategy.VIDEO_ONLY: _video_only,
}


def build_audio_plan(
    layout: AudioLayout,
    strategy: AttemptStrategy,
    *,
    base_volume: float = 1.0,
    overlay_volume: float = 1.0,
) -> AudioPlan:
    return _BUILDERS[strategy](layout, base_volume, overlay_volume)


def plan_attempts(
    layout: AudioLayout,
    *,
    base_volume: float = 1.0,
    overlay_volume: float = 1.0,
) -> list[AudioPlan]:
    """All plans for a layout, in the order they should be tried."""
    return [
        build_audio_plan(layout, strategy, base_volume=base_volume, overlay_volume=overlay_volume)
        for strategy in ATTEMPT_ORDER
    ]
