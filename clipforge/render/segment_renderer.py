"""Render one planned segment to a self-contained intermediate file.

Strategies, picked from the segment's active clips:
- GAP_FILL: nothing active, solid color with silence
- SINGLE_CLIP: one active clip, fitted to the canvas
- COMPOSITE: base clip with one or more overlays on top
- COMPOSITE_OVER_GAP: overlays only, drawn on a solid-color base

Every output has exactly one video and one audio stream encoded with the
shared RenderTarget, so segments concat with a stream copy.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from clipforge.config import get_settings
from clipforge.exceptions import ExportError, ProcessExitError
from clipforge.render import filters
from clipforge.render.audio_fallback import AttemptStrategy, AudioLayout, AudioPlan, plan_attempts
from clipforge.render.encoding import (
    RenderTarget,
    audio_encode_args,
    color_source,
    container_args,
    even,
    silence_source,
    video_encode_args,
)
from clipforge.render.ffmpeg_runner import (
    InputSpec,
    ProgressCallback,
    TranscodeRunner,
    build_transcode_command,
)
from clipforge.render.segment_planner import Segment
from clipforge.schemas.timeline import OverlayPosition, TimelineClip, Track, VideoClip
from clipforge.utils.media_info import MediaInfo, probe_media_async

logger = logging.getLogger(__name__)

ProbeFunc = Callable[[str], Awaitable[MediaInfo]]

# Shortfalls below this are encoder rounding, not missing media.
PAD_EPSILON = 0.001


class SegmentStrategy(str, Enum):
    GAP_FILL = "gap_fill"
    SINGLE_CLIP = "single_clip"
    COMPOSITE = "composite"
    COMPOSITE_OVER_GAP = "composite_over_gap"


@dataclass(frozen=True)
class OverlayGeometry:
    x: int
    y: int
    width: int
    height: int


def compute_overlay_geometry(
    canvas_width: int,
    canvas_height: int,
    position: OverlayPosition,
    source_width: int,
    source_height: int,
) -> OverlayGeometry:
    """Size an overlay box and place it so it stays fully on the canvas.

    Width is scale * canvas width; height follows the source aspect ratio.
    The (x, y) fractions locate the box center, clamped to the canvas edges.
    """
    aspect = source_height / source_width if source_width > 0 and source_height > 0 else 9 / 16

    width = even(round(canvas_width * position.scale))
    height = even(round(width * aspect))
    if height > canvas_height:
        height = even(canvas_height)
        width = min(even(round(height / aspect)), even(canvas_width))

    x = round(position.x * canvas_width - width / 2)
    y = round(position.y * canvas_height - height / 2)
    x = max(0, min(x, canvas_width - width))
    y = max(0, min(y, canvas_height - height))
    return OverlayGeometry(x=x, y=y, width=width, height=height)


def choose_strategy(segment: Segment) -> SegmentStrategy:
    active = segment.active_track_indices
    if not active:
        return SegmentStrategy.GAP_FILL
    if len(active) == 1:
        return SegmentStrategy.SINGLE_CLIP
    if 0 in active:
        return SegmentStrategy.COMPOSITE
    return SegmentStrategy.COMPOSITE_OVER_GAP


def _step_progress(on_progress: ProgressCallback | None, step: int, total: int) -> ProgressCallback | None:
    """Map a sub-step's 0-1 progress into its slice of the whole segment."""
    if on_progress is None:
        return None

    def callback(fraction: float) -> None:
        on_progress((step + fraction) / total)

    return callback


class SegmentRenderer:
    """Renders segments of one export into its work directory."""

    def __init__(
        self,
        runner: TranscodeRunner,
        target: RenderTarget,
        tracks: list[Track],
        clips: list[VideoClip],
        work_dir: str,
        probe: ProbeFunc = probe_media_async,
    ):
        self.runner = runner
        self.target = target
        self.tracks = tracks
        self.clips_by_id = {clip.id: clip for clip in clips}
        self.work_dir = work_dir
        self.probe = probe
        self._audio_presence: dict[str, bool] = {}

    # =========================================================================
    # Entry point
    # =========================================================================

    async def render(
        self,
        segment: Segment,
        output_path: str,
        on_progress: ProgressCallback | None = None,
    ) -> SegmentStrategy:
        """Render a segment to output_path and return the strategy used."""
        strategy = choose_strategy(segment)
        logger.info(
            f"[SEGMENT] #{segment.index} [{segment.start_time:.3f}, {segment.end_time:.3f}) "
            f"strategy={strategy.value} tracks={segment.active_track_indices}"
        )

        if strategy is SegmentStrategy.GAP_FILL:
            await self.render_gap(segment.duration, output_path, on_progress=on_progress)
        elif strategy is SegmentStrategy.SINGLE_CLIP:
            track_index = segment.active_track_indices[0]
            clip = segment.clips[track_index]
            await self.render_clip(
                clip,
                self.tracks[track_index],
                source_start=self._source_start(clip, segment.start_time),
                duration=segment.duration,
                output_path=output_path,
                on_progress=on_progress,
            )
        else:
            await self._render_composite(segment, output_path, on_progress)

        return strategy

    # =========================================================================
    # Building blocks
    # =========================================================================

    async def render_gap(
        self,
        duration: float,
        output_path: str,
        *,
        with_audio: bool = True,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Solid-color filler at the canvas size, optionally with silence."""
        inputs = [InputSpec(color_source(self.target, duration), lavfi=True)]
        maps = ["0:v"]
        output_args = video_encode_args(self.target)
        if with_audio:
            inputs.append(InputSpec(silence_source(self.target, duration), lavfi=True))
            maps.append("1:a")
            output_args = output_args + audio_encode_args(self.target)
        else:
            output_args = output_args + ["-an"]

        cmd = build_transcode_command(
            inputs,
            output_path,
            maps=maps,
            output_args=output_args + ["-t", f"{duration:.6f}"] + container_args(self.target),
        )
        await self.runner.run(
            cmd,
            description=f"gap fill {duration:.3f}s",
            expected_duration=duration,
            on_progress=on_progress,
        )
        return output_path

    async def render_clip(
        self,
        clip: TimelineClip,
        track: Track,
        *,
        source_start: float,
        duration: float,
        output_path: str,
        size: tuple[int, int] | None = None,
        audio: str = "always",
        apply_volume: bool = True,
        final: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Render a window of one clip's source.

        Args:
            clip: Timeline clip to render
            track: Track the clip sits on (mute/volume)
            source_start: Position in the source file to start from
            duration: Exact output duration; short sources are padded
            output_path: Destination file
            size: Exact (width, height) box; None fits the clip to the canvas
            audio: "always" guarantees an audio stream (silence if needed),
                "source" keeps audio only when the source has it and the
                track is not muted
            apply_volume: Apply the track volume here instead of at mix time
            final: Write container flags for a finished export file
        """
        source = self.clips_by_id[clip.video_clip_id]
        available = max(0.0, clip.trim_end - source_start)
        take = min(duration, available)
        shortfall = duration - take
        if shortfall > PAD_EPSILON:
            logger.warning(
                f"[SEGMENT] Clip {clip.id} source window short by {shortfall:.3f}s, "
                f"holding last frame"
            )

        inputs = [InputSpec(source.file_path, seek=source_start, duration=take)]

        video_filters = (
            filters.scale_exact(*size)
            if size is not None
            else filters.fit_to_canvas(self.target.width, self.target.height)
        )
        video_filters.append(f"fps={self.target.fps}")
        if shortfall > PAD_EPSILON:
            video_filters.append(filters.hold_last_frame(shortfall))
        chains = [filters.chain(["0:v"], video_filters, "v")]
        maps = ["[v]"]

        source_audio = not track.muted and await self._source_has_audio(source)
        output_args = video_encode_args(self.target)
        if source_audio:
            audio_filters = [f"aresample={self.target.sample_rate}"]
            if apply_volume and track.volume != 1.0:
                audio_filters.insert(0, filters.volume(track.volume))
            audio_filters.append(filters.pad_audio(duration))
            chains.append(filters.chain(["0:a"], audio_filters, "a"))
            maps.append("[a]")
            output_args = output_args + audio_encode_args(self.target)
        elif audio == "always":
            inputs.append(InputSpec(silence_source(self.target, duration), lavfi=True))
            maps.append("1:a")
            output_args = output_args + audio_encode_args(self.target)
        else:
            output_args = output_args + ["-an"]

        cmd = build_transcode_command(
            inputs,
            output_path,
            filter_graph=filters.graph(chains),
            maps=maps,
            output_args=output_args + ["-t", f"{duration:.6f}"] + container_args(self.target, final=final),
        )
        await self.runner.run(
            cmd,
            description=f"clip {clip.id} @{source_start:.3f}s for {duration:.3f}s",
            expected_duration=duration,
            on_progress=on_progress,
        )
        return output_path

    async def composite_overlay(
        self,
        base_path: str,
        overlay_path: str,
        geometry: OverlayGeometry,
        layout: AudioLayout,
        duration: float,
        output_path: str,
        *,
        base_volume: float = 1.0,
        overlay_volume: float = 1.0,
        on_progress: ProgressCallback | None = None,
    ) -> AudioPlan:
        """Draw an overlay onto a base, escalating audio strategies on failure.

        Returns the plan that succeeded. Raises the last ProcessExitError when
        every strategy fails.
        """
        video_chains = [
            filters.chain(["1:v"], filters.scale_exact(geometry.width, geometry.height), "ov"),
            filters.chain(
                ["0:v", "ov"],
                [filters.overlay_at(geometry.x, geometry.y), f"format={self.target.pixel_format}"],
                "v",
            ),
        ]

        attempts = plan_attempts(layout, base_volume=base_volume, overlay_volume=overlay_volume)
        for attempt, plan in enumerate(attempts, start=1):
            inputs = [InputSpec(base_path), InputSpec(overlay_path)]
            if plan.needs_silence:
                inputs.append(InputSpec(silence_source(self.target, duration), lavfi=True))

            cmd = build_transcode_command(
                inputs,
                output_path,
                filter_graph=filters.graph(video_chains + plan.chains),
                maps=["[v]", plan.audio_map],
                output_args=(
                    video_encode_args(self.target)
                    + audio_encode_args(self.target)
                    + ["-t", f"{duration:.6f}"]
                    + container_args(self.target)
                ),
            )
            try:
                await self.runner.run(
                    cmd,
                    description=f"composite ({layout.value}, {plan.strategy.value})",
                    expected_duration=duration,
                    on_progress=on_progress,
                )
            except ProcessExitError as e:
                logger.warning(
                    f"[COMPOSITE] Strategy {plan.strategy.value} failed for layout "
                    f"{layout.value}: {e.message[:200]}"
                )
                if attempt == len(attempts):
                    raise
                continue

            if plan.strategy is not AttemptStrategy.PRIMARY:
                logger.info(f"[COMPOSITE] Recovered with strategy {plan.strategy.value}")
            return plan

    # =========================================================================
    # Composite
    # =========================================================================

    async def _render_composite(
        self,
        segment: Segment,
        output_path: str,
        on_progress: ProgressCallback | None,
    ) -> None:
        duration = segment.duration
        overlay_indices = [i for i in segment.active_track_indices if i > 0]
        total_steps = 1 + 2 * len(overlay_indices)
        prefix = os.path.join(self.work_dir, f"seg{segment.index:04d}")
        intermediates: list[str] = []

        try:
            base_path = f"{prefix}_base.mp4"
            intermediates.append(base_path)
            base_clip = segment.clip_for_track(0)
            if base_clip is not None:
                base_track = self.tracks[0]
                await self.render_clip(
                    base_clip,
                    base_track,
                    source_start=self._source_start(base_clip, segment.start_time),
                    duration=duration,
                    output_path=base_path,
                    audio="source",
                    apply_volume=False,
                    on_progress=_step_progress(on_progress, 0, total_steps),
                )
                base_volume = base_track.volume
            else:
                await self.render_gap(
                    duration,
                    base_path,
                    with_audio=False,
                    on_progress=_step_progress(on_progress, 0, total_steps),
                )
                base_volume = 1.0
            base_has_audio = await self._intermediate_has_audio(base_path)

            current = base_path
            step = 1
            for n, track_index in enumerate(overlay_indices):
                track = self.tracks[track_index]
                clip = segment.clips[track_index]
                geometry = await self._overlay_geometry(track, clip)

                overlay_path = f"{prefix}_ov{track_index}.mp4"
                intermediates.append(overlay_path)
                await self.render_clip(
                    clip,
                    track,
                    source_start=self._source_start(clip, segment.start_time),
                    duration=duration,
                    output_path=overlay_path,
                    size=(geometry.width, geometry.height),
                    audio="source",
                    apply_volume=False,
                    on_progress=_step_progress(on_progress, step, total_steps),
                )
                overlay_has_audio = await self._intermediate_has_audio(overlay_path)
                step += 1

                is_last = n == len(overlay_indices) - 1
                composite_path = output_path if is_last else f"{prefix}_comp{track_index}.mp4"
                if not is_last:
                    intermediates.append(composite_path)

                await self.composite_overlay(
                    current,
                    overlay_path,
                    geometry,
                    AudioLayout.from_presence(base_has_audio, overlay_has_audio),
                    duration,
                    composite_path,
                    base_volume=base_volume,
                    overlay_volume=track.volume,
                    on_progress=_step_progress(on_progress, step, total_steps),
                )
                step += 1

                # Volumes are baked into the composite from here on.
                current = composite_path
                base_has_audio = True
                base_volume = 1.0
        finally:
            for path in intermediates:
                if os.path.exists(path):
                    os.remove(path)

    async def _overlay_geometry(self, track: Track, clip: TimelineClip) -> OverlayGeometry:
        settings = get_settings()
        position = track.overlay_position or OverlayPosition(
            x=settings.default_overlay_x,
            y=settings.default_overlay_y,
            scale=settings.default_overlay_scale,
        )
        source = self.clips_by_id[clip.video_clip_id]
        width, height = source.width, source.height
        if width <= 0 or height <= 0:
            info = await self.probe(source.file_path)
            width, height = info.width, info.height
        return compute_overlay_geometry(
            self.target.width, self.target.height, position, width, height
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _source_start(clip: TimelineClip, segment_start: float) -> float:
        """Source position that lines up with the segment start on the timeline."""
        return clip.trim_start + max(0.0, segment_start - clip.start_time)

    async def _source_has_audio(self, source: VideoClip) -> bool:
        if source.file_path not in self._audio_presence:
            info = await self.probe(source.file_path)
            self._audio_presence[source.file_path] = info.has_audio
        return self._audio_presence[source.file_path]

    async def _intermediate_has_audio(self, path: str) -> bool:
        """Probe a freshly rendered file. An unreadable probe assumes audio is present."""
        try:
            info = await self.probe(path)
        except ExportError as e:
            logger.warning(f"[COMPOSITE] Could not probe {path}, assuming audio: {e.message}")
            return True
        return info.has_audio
