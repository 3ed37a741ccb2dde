"""
Export pipeline for multi-track timelines.

This module orchestrates one export end to end:
1. Validate the timeline against its source clips
2. Resolve output parameters (resolution, quality, container)
3. Plan segments, or take a fast path for simple timelines
4. Render each segment to the export's work directory
5. Concatenate segments with a stream copy
6. Move the finished file to its destination

Every export owns a private work directory that is removed on success,
failure and cancellation alike. The destination path is only written by
the final move, so a failed export never leaves a partial file behind.
"""

import asyncio
import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional
from uuid import uuid4

from clipforge.config import get_settings
from clipforge.exceptions import (
    AssemblyError,
    ExportCancelledError,
    ExportError,
    ValidationError,
)
from clipforge.render.encoding import RenderTarget, resolve_resolution
from clipforge.render.ffmpeg_runner import FFmpegRunner, TranscodeRunner
from clipforge.render.segment_planner import (
    TIME_PRECISION,
    build_segments,
    compute_composition_duration,
)
from clipforge.render.segment_renderer import ProbeFunc, SegmentRenderer
from clipforge.render.sequence_assembler import SequenceAssembler
from clipforge.schemas.envelope import ErrorLocation
from clipforge.schemas.timeline import ExportSettings, Timeline, TimelineClip, Track, VideoClip
from clipforge.services.timeline_validator import validate_timeline
from clipforge.utils.media_info import probe_media_async

logger = logging.getLogger(__name__)

# Called with (percent, stage message).
ExportProgressCallback = Callable[[float, str], None]

# Progress ranges (percent)
PREPARE_END = 5.0
RENDER_END = 90.0
ASSEMBLE_END = 99.0

# Two clips closer than this are treated as touching.
CONTIGUITY_TOLERANCE = 10 ** -3


class ExportState(str, Enum):
    """Export lifecycle states."""

    IDLE = "idle"
    VALIDATING = "validating"
    PLANNING = "planning"
    RENDERING = "rendering"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({ExportState.DONE, ExportState.FAILED, ExportState.CANCELLED})


@dataclass
class ExportProgress:
    """Progress information for an export."""

    export_id: str
    state: ExportState
    percent: float = 0.0
    current_step: Optional[str] = None
    current_segment: Optional[int] = None
    segment_count: int = 0
    elapsed_ms: int = 0
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "export_id": self.export_id,
            "state": self.state.value,
            "percent": self.percent,
            "current_step": self.current_step,
            "current_segment": self.current_segment,
            "segment_count": self.segment_count,
            "elapsed_ms": self.elapsed_ms,
            "error_message": self.error_message,
        }


@dataclass(eq=False)
class ExportHandle:
    """Live state of one export.

    Holds the currently running encoder process so cancel_export() can
    terminate it. Await wait() for the result.
    """

    export_id: str
    output_path: str
    state: ExportState = ExportState.IDLE
    percent: float = 0.0
    current_step: Optional[str] = None
    current_segment: Optional[int] = None
    segment_count: int = 0
    work_dir: Optional[str] = None
    process: Optional[asyncio.subprocess.Process] = None
    error: Optional[ExportError] = None
    cancel_requested: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False)
    _started: float = field(default_factory=time.monotonic, repr=False)

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def progress(self) -> ExportProgress:
        return ExportProgress(
            export_id=self.export_id,
            state=self.state,
            percent=self.percent,
            current_step=self.current_step,
            current_segment=self.current_segment,
            segment_count=self.segment_count,
            elapsed_ms=int((time.monotonic() - self._started) * 1000),
            error_message=self.error.message if self.error else None,
        )

    async def wait(self) -> str:
        """Wait for the export and return the output path.

        Raises:
            ExportError: The failure that ended the export
            ExportCancelledError: If the export was cancelled
        """
        if self._task is None:
            raise RuntimeError(f"Export {self.export_id} was never started")
        try:
            # shield: a cancelled waiter must not cancel the export itself
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                raise ExportCancelledError() from None
            raise

    def _on_task_done(self, task: asyncio.Task) -> None:
        if not task.cancelled():
            # Failures are recorded on the handle; mark the exception retrieved.
            task.exception()
        elif not self.done:
            # Cancelled before the pipeline body ever ran.
            self.state = ExportState.CANCELLED
            self.error = ExportCancelledError()
            self.completed_at = datetime.now(timezone.utc)


class ProgressTracker:
    """Maps stage progress onto one monotonically non-decreasing percentage."""

    def __init__(self, handle: ExportHandle, callback: ExportProgressCallback | None = None):
        self.handle = handle
        self.callback = callback

    def update(self, percent: float, step: str | None = None) -> None:
        if step is not None:
            self.handle.current_step = step
        percent = round(min(100.0, max(self.handle.percent, percent)), 2)
        if percent <= self.handle.percent and self.handle.percent > 0:
            return
        self.handle.percent = percent
        if self.callback:
            self.callback(percent, self.handle.current_step or "")

    def segment(self, index: int, count: int, fraction: float) -> None:
        span = RENDER_END - PREPARE_END
        fraction = max(0.0, min(1.0, fraction))
        self.update(PREPARE_END + span * (index + fraction) / max(count, 1))

    def assembly(self, fraction: float) -> None:
        self.update(RENDER_END + (ASSEMBLE_END - RENDER_END) * max(0.0, min(1.0, fraction)))


def single_clip_fast_path(tracks: list[Track]) -> Optional[TimelineClip]:
    """The lone base clip when it starts at 0 and no overlay track has clips."""
    if any(track.clips for track in tracks[1:]):
        return None
    if len(tracks[0].clips) != 1:
        return None
    clip = tracks[0].clips[0]
    if abs(clip.start_time) > CONTIGUITY_TOLERANCE:
        return None
    return clip


def sequential_fast_path(tracks: list[Track], duration: float) -> Optional[list[TimelineClip]]:
    """Base clips in order when they tile [0, duration) without gaps and there are no overlays."""
    if any(track.clips for track in tracks[1:]):
        return None
    clips = sorted(tracks[0].clips, key=lambda c: c.start_time)
    if len(clips) < 2:
        return None

    cursor = 0.0
    for clip in clips:
        if abs(clip.start_time - cursor) > CONTIGUITY_TOLERANCE:
            return None
        cursor = clip.end_time
    if abs(cursor - duration) > CONTIGUITY_TOLERANCE:
        return None
    return clips


class ExportPipeline:
    """Runs a single export. Use start_export() rather than constructing this directly."""

    def __init__(
        self,
        timeline: Timeline,
        clips: list[VideoClip],
        export_settings: ExportSettings,
        output_path: str,
        *,
        handle: ExportHandle,
        runner: TranscodeRunner | None = None,
        probe: ProbeFunc = probe_media_async,
        on_progress: ExportProgressCallback | None = None,
    ):
        self.timeline = timeline
        self.clips = clips
        self.clips_by_id = {clip.id: clip for clip in clips}
        self.export_settings = export_settings
        self.output_path = output_path
        self.handle = handle
        self.runner = runner or FFmpegRunner(holder=handle)
        self.probe = probe
        self.progress = ProgressTracker(handle, on_progress)

    def _set_state(self, state: ExportState, step: str | None = None) -> None:
        logger.info(f"[EXPORT] {self.handle.export_id}: {self.handle.state.value} -> {state.value}")
        self.handle.state = state
        if step is not None:
            self.handle.current_step = step

    async def run(self) -> str:
        """
        Execute the full export.

        Returns:
            Path to the exported file

        Raises:
            ValidationError: If the timeline is not exportable (nothing is spawned)
            ExportCancelledError: If the export was cancelled
            ExportError: Any other encoder, probe or assembly failure
        """
        handle = self.handle
        started = time.monotonic()
        try:
            self._set_state(ExportState.VALIDATING, "Validating timeline")
            validate_timeline(self.timeline, self.clips)

            tracks = self.timeline.video_tracks()
            duration = round(
                compute_composition_duration(tracks, fallback=self.timeline.duration), TIME_PRECISION
            )
            if duration <= 0:
                raise ValidationError("Composition has zero duration", code="EMPTY_COMPOSITION")

            target = await self._resolve_target(tracks)
            handle.work_dir = tempfile.mkdtemp(
                prefix=f"{get_settings().export_temp_prefix}{handle.export_id}_",
                dir=get_settings().export_temp_root or None,
            )
            logger.info(
                f"[EXPORT] {handle.export_id}: {duration:.3f}s at {target.width}x{target.height} "
                f"{target.fps}fps ({target.quality}, {target.format}), work dir {handle.work_dir}"
            )
            self.progress.update(PREPARE_END, "Prepared")

            staged_path = os.path.join(handle.work_dir, f"export.{target.format}")
            renderer = SegmentRenderer(
                self.runner, target, tracks, self.clips, handle.work_dir, probe=self.probe
            )

            self._set_state(ExportState.PLANNING, "Planning segments")
            single = single_clip_fast_path(tracks)
            sequential = None if single else sequential_fast_path(tracks, duration)

            if single is not None:
                await self._render_single_clip(renderer, tracks[0], single, staged_path)
            else:
                if sequential is not None:
                    segment_files = await self._render_sequential(renderer, tracks[0], sequential)
                else:
                    segment_files = await self._render_segments(renderer, tracks, duration)

                self._set_state(ExportState.ASSEMBLING, "Concatenating segments")
                self.progress.update(RENDER_END)
                assembler = SequenceAssembler(self.runner, handle.work_dir)
                await assembler.assemble(
                    segment_files,
                    staged_path,
                    output_format=target.format,
                    expected_duration=duration,
                    on_progress=self.progress.assembly,
                )

            self._publish(staged_path)
            handle.current_segment = None
            self._set_state(ExportState.DONE, "Complete")
            handle.completed_at = datetime.now(timezone.utc)
            self.progress.update(100.0)
            logger.info(
                f"[EXPORT] {handle.export_id} complete in {time.monotonic() - started:.2f}s: "
                f"{self.output_path}"
            )
            return self.output_path

        except asyncio.CancelledError:
            self._finish_cancelled()
            raise ExportCancelledError() from None
        except ExportError as e:
            if handle.cancel_requested:
                # A terminated encoder exits non-zero before the cancel lands.
                self._finish_cancelled()
                raise ExportCancelledError() from e
            self._finish_failed(e)
            raise
        except Exception as e:
            logger.exception(f"[EXPORT] {handle.export_id} crashed: {e}")
            error = ExportError(f"Export failed: {e}")
            self._finish_failed(error)
            raise error from e
        finally:
            self._cleanup()

    # =========================================================================
    # Render paths
    # =========================================================================

    async def _render_single_clip(
        self,
        renderer: SegmentRenderer,
        track: Track,
        clip: TimelineClip,
        staged_path: str,
    ) -> None:
        """One base clip, no overlays: a single encode straight to the final container."""
        logger.info(f"[EXPORT] Single clip fast path: {clip.id}")
        self.handle.segment_count = 1
        self.handle.current_segment = 0
        self._set_state(ExportState.RENDERING, "Rendering clip")
        await renderer.render_clip(
            clip,
            track,
            source_start=clip.trim_start,
            duration=clip.trimmed_duration,
            output_path=staged_path,
            final=True,
            on_progress=lambda f: self.progress.segment(0, 1, f),
        )
        self.progress.update(ASSEMBLE_END, "Finalizing")

    async def _render_sequential(
        self,
        renderer: SegmentRenderer,
        track: Track,
        clips: list[TimelineClip],
    ) -> list[str]:
        """Back-to-back base clips: one encode per clip, then concat."""
        logger.info(f"[EXPORT] Sequential fast path: {len(clips)} clips")
        self.handle.segment_count = len(clips)
        self._set_state(ExportState.RENDERING)

        files: list[str] = []
        for index, clip in enumerate(clips):
            output = os.path.join(self.handle.work_dir, f"segment_{index:04d}.mp4")
            self._begin_segment(index, len(clips))
            await self._with_segment_context(
                index,
                renderer.render_clip(
                    clip,
                    track,
                    source_start=clip.trim_start,
                    duration=clip.trimmed_duration,
                    output_path=output,
                    on_progress=lambda f, i=index: self.progress.segment(i, len(clips), f),
                ),
            )
            files.append(output)
        return files

    async def _render_segments(
        self,
        renderer: SegmentRenderer,
        tracks: list[Track],
        duration: float,
    ) -> list[str]:
        segments = build_segments(tracks, duration)
        self.handle.segment_count = len(segments)
        self._set_state(ExportState.RENDERING)

        files: list[str] = []
        for segment in segments:
            output = os.path.join(self.handle.work_dir, f"segment_{segment.index:04d}.mp4")
            self._begin_segment(segment.index, len(segments))
            await self._with_segment_context(
                segment.index,
                renderer.render(
                    segment,
                    output,
                    on_progress=lambda f, i=segment.index: self.progress.segment(i, len(segments), f),
                ),
            )
            files.append(output)
        return files

    def _begin_segment(self, index: int, count: int) -> None:
        self.handle.current_segment = index
        self.progress.update(
            PREPARE_END + (RENDER_END - PREPARE_END) * index / count,
            f"Rendering segment {index + 1}/{count}",
        )

    @staticmethod
    async def _with_segment_context(index: int, render) -> None:
        """Await a segment render, tagging any failure with the segment index."""
        try:
            await render
        except ExportError as e:
            if e.location is None:
                e.location = ErrorLocation(segment_index=index)
            logger.error(f"[SEGMENT] Segment {index} failed: {e.message}")
            raise

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _resolve_target(self, tracks: list[Track]) -> RenderTarget:
        reference: Optional[VideoClip] = None
        probed_size: Optional[tuple[int, int]] = None

        if self.export_settings.explicit_resolution() is None and tracks[0].clips:
            first = min(tracks[0].clips, key=lambda c: c.start_time)
            reference = self.clips_by_id.get(first.video_clip_id)
            if reference is not None and (reference.width <= 0 or reference.height <= 0):
                info = await self.probe(reference.file_path)
                probed_size = (info.width, info.height)

        width, height = resolve_resolution(self.export_settings, reference, probed_size)
        return RenderTarget.from_settings(self.export_settings, width, height)

    def _publish(self, staged_path: str) -> None:
        """Move the finished file into place; never leave a partial destination."""
        if not os.path.isfile(staged_path):
            raise AssemblyError(f"Export produced no output: {staged_path}")

        destination_dir = os.path.dirname(os.path.abspath(self.output_path))
        try:
            os.makedirs(destination_dir, exist_ok=True)
            shutil.move(staged_path, self.output_path)
        except OSError as e:
            if os.path.exists(self.output_path):
                os.remove(self.output_path)
            raise AssemblyError(f"Failed to write {self.output_path}: {e}") from e

    def _finish_failed(self, error: ExportError) -> None:
        self.handle.error = error
        self.handle.process = None
        self.handle.completed_at = datetime.now(timezone.utc)
        self._set_state(ExportState.FAILED, f"Failed: {error.code}")
        logger.error(f"[EXPORT] {self.handle.export_id} failed [{error.code}]: {error.message}")

    def _finish_cancelled(self) -> None:
        self.handle.error = ExportCancelledError()
        self.handle.process = None
        self.handle.completed_at = datetime.now(timezone.utc)
        self._set_state(ExportState.CANCELLED, "Cancelled")

    def _cleanup(self) -> None:
        """Remove the export's work directory."""
        work_dir = self.handle.work_dir
        if work_dir and os.path.exists(work_dir):
            shutil.rmtree(work_dir, ignore_errors=True)
            logger.info(f"[EXPORT] Removed work dir {work_dir}")


# ============================================================================
# Public API
# ============================================================================


def start_export(
    timeline: Timeline,
    clips: list[VideoClip],
    export_settings: ExportSettings,
    output_path: str,
    on_progress: ExportProgressCallback | None = None,
    *,
    export_id: str | None = None,
    runner: TranscodeRunner | None = None,
    probe: ProbeFunc = probe_media_async,
) -> ExportHandle:
    """Schedule an export on the running event loop and return its handle.

    Must be called from within a running event loop.
    """
    handle = ExportHandle(export_id=export_id or str(uuid4()), output_path=output_path)
    pipeline = ExportPipeline(
        timeline,
        clips,
        export_settings,
        output_path,
        handle=handle,
        runner=runner,
        probe=probe,
        on_progress=on_progress,
    )
    handle._task = asyncio.create_task(pipeline.run(), name=f"export-{handle.export_id}")
    handle._task.add_done_callback(handle._on_task_done)
    return handle


def cancel_export(handle: ExportHandle) -> bool:
    """Request cancellation. Returns False if the export already finished."""
    if handle.done:
        return False

    handle.cancel_requested = True
    proc = handle.process
    if proc is not None and proc.returncode is None:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
    if handle._task is not None and not handle._task.done():
        handle._task.cancel()
    logger.info(f"[EXPORT] Cancellation requested for {handle.export_id}")
    return True


async def export_timeline(
    timeline: Timeline,
    clips: list[VideoClip],
    export_settings: ExportSettings,
    output_path: str,
    on_progress: ExportProgressCallback | None = None,
    **kwargs: Any,
) -> str:
    """Run an export to completion and return the output path."""
    handle = start_export(timeline, clips, export_settings, output_path, on_progress, **kwargs)
    return await handle.wait()
