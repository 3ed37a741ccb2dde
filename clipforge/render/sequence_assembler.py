"""Join rendered segment files into the final export without re-encoding."""

import logging
import os

from clipforge.exceptions import AssemblyError, ProcessExitError
from clipforge.render.encoding import FASTSTART_FORMATS
from clipforge.render.ffmpeg_runner import (
    InputSpec,
    ProgressCallback,
    TranscodeRunner,
    build_transcode_command,
)

logger = logging.getLogger(__name__)

CONCAT_LIST_NAME = "concat_list.txt"


def write_concat_list(segment_files: list[str], list_path: str) -> str:
    """Write an ffmpeg concat demuxer list. Paths are quoted and escaped."""
    with open(list_path, "w", encoding="utf-8") as f:
        for segment_file in segment_files:
            # FFmpeg concat requires escaped paths
            escaped = os.path.abspath(segment_file).replace("'", "'\\''")
            f.write(f"file '{escaped}'\n")
    return list_path


class SequenceAssembler:
    """Concatenates segment files in order with a stream copy."""

    def __init__(self, runner: TranscodeRunner, work_dir: str):
        self.runner = runner
        self.work_dir = work_dir

    async def assemble(
        self,
        segment_files: list[str],
        output_path: str,
        *,
        output_format: str = "mp4",
        expected_duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Concatenate segment_files (in order) into output_path.

        Raises:
            AssemblyError: If a segment is missing or the concat fails
        """
        if not segment_files:
            raise AssemblyError("No segments to assemble")

        for segment_file in segment_files:
            if not os.path.isfile(segment_file) or os.path.getsize(segment_file) == 0:
                raise AssemblyError(f"Segment file missing or empty: {segment_file}")

        list_path = write_concat_list(
            segment_files, os.path.join(self.work_dir, CONCAT_LIST_NAME)
        )

        output_args = ["-c", "copy"]
        if output_format in FASTSTART_FORMATS:
            output_args.extend(["-movflags", "+faststart"])

        cmd = build_transcode_command(
            [InputSpec(list_path)],
            output_path,
            output_args=output_args,
        )
        # The concat demuxer options go in front of its -i.
        list_index = cmd.index(list_path)
        cmd[list_index - 1:list_index - 1] = ["-f", "concat", "-safe", "0"]

        logger.info(f"[CONCAT] Joining {len(segment_files)} segments into {output_path}")
        try:
            await self.runner.run(
                cmd,
                description=f"concat {len(segment_files)} segments",
                expected_duration=expected_duration,
                on_progress=on_progress,
            )
        except ProcessExitError as e:
            raise AssemblyError(f"Segment concatenation failed: {e.message}") from e

        if not os.path.isfile(output_path):
            raise AssemblyError(f"Concatenation produced no output: {output_path}")

        logger.info(f"[CONCAT] Concatenation successful: {output_path}")
        return output_path
