"""In-process registry of running and recent exports.

Exports run as asyncio tasks on the server's event loop. Finished exports
are kept for status queries up to export_history_limit, oldest dropped first.
"""

import asyncio
import logging
import os
from collections import OrderedDict
from functools import lru_cache
from uuid import uuid4

from clipforge.config import get_settings
from clipforge.exceptions import ExportAlreadyFinishedError, ExportNotFoundError
from clipforge.render.ffmpeg_runner import TranscodeRunner
from clipforge.render.pipeline import ExportHandle, ExportState, cancel_export, start_export
from clipforge.render.segment_renderer import ProbeFunc
from clipforge.schemas.exports import ExportCreateRequest, ExportJobResponse
from clipforge.services.timeline_validator import validate_timeline
from clipforge.utils.media_info import probe_media_async

logger = logging.getLogger(__name__)


class ExportManager:
    def __init__(
        self,
        history_limit: int | None = None,
        runner: TranscodeRunner | None = None,
        probe: ProbeFunc = probe_media_async,
    ):
        self.history_limit = history_limit or get_settings().export_history_limit
        self.runner = runner
        self.probe = probe
        self._exports: OrderedDict[str, ExportHandle] = OrderedDict()

    def create_export(self, request: ExportCreateRequest) -> ExportHandle:
        """Validate synchronously, then start the export in the background.

        Raises:
            ValidationError: If the timeline is not exportable
        """
        validate_timeline(request.timeline, request.clips)

        export_id = str(uuid4())
        output_path = request.output_path or os.path.join(
            get_settings().export_output_dir, f"{export_id}.{request.settings.format}"
        )
        handle = start_export(
            request.timeline,
            request.clips,
            request.settings,
            output_path,
            export_id=export_id,
            runner=self.runner,
            probe=self.probe,
        )
        self._exports[export_id] = handle
        self._prune()
        logger.info(f"[EXPORT] Created export {export_id} -> {output_path}")
        return handle

    def get_export(self, export_id: str) -> ExportHandle:
        handle = self._exports.get(export_id)
        if handle is None:
            raise ExportNotFoundError(export_id)
        return handle

    def list_exports(self) -> list[ExportHandle]:
        return list(reversed(self._exports.values()))

    def cancel(self, export_id: str) -> ExportHandle:
        handle = self.get_export(export_id)
        if not cancel_export(handle):
            raise ExportAlreadyFinishedError(
                f"Export {export_id} already finished ({handle.state.value})"
            )
        return handle

    async def shutdown(self) -> None:
        """Cancel every running export and wait for their cleanup."""
        running = [h for h in self._exports.values() if not h.done]
        for handle in running:
            cancel_export(handle)
        tasks = [h._task for h in running if h._task is not None]
        # Outcomes are already recorded on each handle.
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"[EXPORT] Stopped {len(tasks)} running exports")

    def _prune(self) -> None:
        finished = [eid for eid, h in self._exports.items() if h.done]
        while len(self._exports) > self.history_limit and finished:
            self._exports.pop(finished.pop(0), None)

    @staticmethod
    def to_response(handle: ExportHandle) -> ExportJobResponse:
        output_size = None
        if handle.state is ExportState.DONE and os.path.isfile(handle.output_path):
            output_size = os.path.getsize(handle.output_path)
        return ExportJobResponse(
            id=handle.export_id,
            state=handle.state.value,
            progress=handle.percent,
            current_stage=handle.current_step,
            current_segment=handle.current_segment,
            segment_count=handle.segment_count,
            output_path=handle.output_path,
            output_size=output_size,
            error=handle.error.to_error_info() if handle.error else None,
            created_at=handle.created_at,
            completed_at=handle.completed_at,
        )


@lru_cache
def get_export_manager() -> ExportManager:
    return ExportManager()
