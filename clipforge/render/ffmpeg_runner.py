"""FFmpeg subprocess execution with progress reporting.

Commands run with "-progress pipe:1"; out_time_us lines on stdout are
converted to a 0.0-1.0 fraction of the expected output duration.
stderr is drained concurrently so a chatty encoder never blocks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from clipforge.config import get_settings
from clipforge.exceptions import ProcessExitError, ProcessSpawnError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

# Seconds to wait for a terminated ffmpeg before killing it.
TERMINATE_GRACE_S = 5.0

# Bytes of stderr kept for error reporting.
STDERR_TAIL_BYTES = 64 * 1024


@dataclass
class InputSpec:
    """One ffmpeg input: a file window or a lavfi source expression."""

    source: str
    lavfi: bool = False
    seek: float | None = None
    duration: float | None = None

    def to_args(self) -> list[str]:
        args: list[str] = []
        if self.lavfi:
            args.extend(["-f", "lavfi"])
        if self.seek is not None and self.seek > 0:
            args.extend(["-ss", f"{self.seek:.6f}"])
        if self.duration is not None:
            args.extend(["-t", f"{self.duration:.6f}"])
        args.extend(["-i", self.source])
        return args


@dataclass
class TranscodeResult:
    output_path: str
    elapsed_s: float
    stderr: str = ""


class ProcessHolder(Protocol):
    """Anything that tracks the currently running encoder process."""

    process: Optional[asyncio.subprocess.Process]


class TranscodeRunner(Protocol):
    async def run(
        self,
        cmd: list[str],
        *,
        description: str,
        expected_duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TranscodeResult: ...


def build_transcode_command(
    inputs: list[InputSpec],
    output_path: str,
    *,
    filter_graph: str | None = None,
    maps: list[str] | None = None,
    output_args: list[str] | None = None,
    ffmpeg_path: str | None = None,
) -> list[str]:
    """Assemble a complete ffmpeg command line. The output path is always last."""
    cmd = [ffmpeg_path or get_settings().ffmpeg_path, "-y", "-hide_banner", "-nostdin"]
    for spec in inputs:
        cmd.extend(spec.to_args())
    if filter_graph:
        cmd.extend(["-filter_complex", filter_graph])
    for target in maps or []:
        cmd.extend(["-map", target])
    cmd.extend(output_args or [])
    cmd.append(output_path)
    return cmd


@dataclass
class FFmpegRunner:
    """Runs ffmpeg commands one at a time on behalf of a single export.

    The running process is published on ``holder.process`` so the export
    can be cancelled by terminating it.
    """

    holder: Optional[ProcessHolder] = None
    history: list[str] = field(default_factory=list)

    async def run(
        self,
        cmd: list[str],
        *,
        description: str,
        expected_duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> TranscodeResult:
        """Run one ffmpeg command to completion.

        Raises:
            ProcessSpawnError: If the binary cannot be launched
            ProcessExitError: If ffmpeg exits non-zero
        """
        cmd_with_progress = cmd.copy()
        # Insert -progress pipe:1 before output_path to get progress on stdout
        cmd_with_progress.insert(-1, "-progress")
        cmd_with_progress.insert(-1, "pipe:1")
        cmd_with_progress.insert(-1, "-nostats")

        logger.info(f"[FFMPEG] {description}: {' '.join(cmd_with_progress)}")
        self.history.append(description)

        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd_with_progress,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ProcessSpawnError(cmd[0], str(e)) from e

        if self.holder is not None:
            self.holder.process = proc

        stderr_task = asyncio.create_task(self._drain_stderr(proc))
        try:
            await self._read_progress(proc, expected_duration, on_progress)
            stderr_bytes = await stderr_task
            await proc.wait()
        except asyncio.CancelledError:
            stderr_task.cancel()
            await terminate_process(proc)
            raise
        finally:
            if self.holder is not None and self.holder.process is proc:
                self.holder.process = None

        stderr_text = stderr_bytes.decode("utf-8", errors="replace")
        elapsed = time.monotonic() - started

        if proc.returncode != 0:
            logger.error(f"[FFMPEG] {description} failed (exit {proc.returncode}): {stderr_text[-2000:]}")
            raise ProcessExitError(proc.returncode, stderr_text, description=description)

        if on_progress is not None:
            on_progress(1.0)
        logger.info(f"[FFMPEG] {description} done in {elapsed:.2f}s")
        return TranscodeResult(output_path=cmd[-1], elapsed_s=elapsed, stderr=stderr_text)

    @staticmethod
    async def _read_progress(
        proc: asyncio.subprocess.Process,
        expected_duration: float | None,
        on_progress: ProgressCallback | None,
    ) -> None:
        assert proc.stdout is not None
        async for raw_line in proc.stdout:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line.startswith("out_time_us=") and on_progress and expected_duration:
                try:
                    time_s = int(line.split("=", 1)[1]) / 1_000_000
                except ValueError:
                    # ffmpeg prints N/A before the first frame
                    continue
                on_progress(max(0.0, min(0.99, time_s / expected_duration)))
            elif line.startswith("progress=end"):
                break
        # Keep reading so ffmpeg never blocks on a full stdout pipe.
        await proc.stdout.read()

    @staticmethod
    async def _drain_stderr(proc: asyncio.subprocess.Process) -> bytes:
        assert proc.stderr is not None
        buffer = bytearray()
        while True:
            chunk = await proc.stderr.read(8192)
            if not chunk:
                break
            buffer.extend(chunk)
            if len(buffer) > STDERR_TAIL_BYTES:
                del buffer[: len(buffer) - STDERR_TAIL_BYTES]
        return bytes(buffer)


async def terminate_process(proc: asyncio.subprocess.Process) -> None:
    """Terminate a running process, killing it if it ignores SIGTERM."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=TERMINATE_GRACE_S)
    except asyncio.TimeoutError:
        logger.warning(f"[FFMPEG] Process {proc.pid} ignored SIGTERM, killing")
        proc.kill()
        await proc.wait()
