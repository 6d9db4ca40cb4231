"""Assemble and run the ffmpeg job for a :class:`DeliveryPlan`.

Every strategy writes to ffmpeg's stdout so bytes can flow to the client
before the job finishes: video as fragmented MP4 (no up-front index),
audio as MP3.  Sources with a direct URL are opened by ffmpeg itself;
sources without one are fetched by a ``yt-dlp -o -`` feeder process whose
stdout pipe is handed to ffmpeg as ``pipe:<fd>``.  Reading from the job
one chunk at a time leaves backpressure to the OS pipes.
"""

import subprocess
import threading
from typing import Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.models.catalog import DeliveryPlan, DeliveryStrategy, RankedFormat
from app.services.backends import SecondaryBackend
from app.services.delivery import LAST_RESORT_AUDIO
from app.services.errors import PipelineFailureError

logger = get_logger(__name__)

FRAGMENTED_MP4_FLAGS = "frag_keyframe+empty_moov"

# strategy -> (file extension, content type)
OUTPUT_FORMATS: dict[DeliveryStrategy, tuple[str, str]] = {
    DeliveryStrategy.PASSTHROUGH: ("mp4", "video/mp4"),
    DeliveryStrategy.MERGE: ("mp4", "video/mp4"),
    DeliveryStrategy.TRANSCODE_DOWNSCALE: ("mp4", "video/mp4"),
    DeliveryStrategy.AUDIO_EXTRACT: ("mp3", "audio/mpeg"),
}

_STDERR_LIMIT = 64 * 1024


class PipelineJob:
    """A running ffmpeg process plus any feeder processes it reads from."""

    def __init__(
        self,
        process: subprocess.Popen,
        feeders: Optional[list[subprocess.Popen]] = None,
        description: str = "",
    ) -> None:
        self.process = process
        self.feeders = feeders or []
        self.description = description
        self._stderr_buffer = bytearray()
        self._stderr_thread = threading.Thread(target=self._drain_stderr, daemon=True)
        self._stderr_thread.start()

    def _drain_stderr(self) -> None:
        if self.process.stderr is None:
            return
        try:
            for line in iter(self.process.stderr.readline, b""):
                if len(self._stderr_buffer) < _STDERR_LIMIT:
                    self._stderr_buffer.extend(line[: _STDERR_LIMIT - len(self._stderr_buffer)])
                if settings.FFMPEG_DEBUG:
                    logger.debug(f"[ffmpeg] {line.decode(errors='replace').rstrip()}")
        except (OSError, ValueError):
            # stderr closed underneath us by terminate()
            return

    @property
    def stderr_text(self) -> str:
        return self._stderr_buffer.decode(errors="replace")

    @property
    def returncode(self) -> Optional[int]:
        return self.process.poll()

    def read(self, size: int) -> bytes:
        """Return up to *size* bytes as soon as any are available; b"" at EOF."""
        if self.process.stdout is None:
            return b""
        return self.process.stdout.read1(size)

    def wait(self, timeout: Optional[float] = None) -> int:
        return self.process.wait(timeout=timeout)

    def signal_stop(self) -> None:
        """Send SIGTERM to ffmpeg and every feeder without waiting for them."""
        for proc in [self.process, *self.feeders]:
            if proc.poll() is None:
                proc.terminate()

    def terminate(self) -> None:
        """Stop ffmpeg and every feeder and reap them; safe to call more than once."""
        self.signal_stop()
        for proc in [self.process, *self.feeders]:
            if proc.poll() is None:
                try:
                    proc.wait(timeout=2)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
            if proc.stdout is not None and not proc.stdout.closed:
                proc.stdout.close()
        self._stderr_thread.join(timeout=0.5)


class PipelineAssembler:
    """Builds ffmpeg command lines and starts :class:`PipelineJob`s."""

    def __init__(self, secondary: SecondaryBackend, ffmpeg_binary: str | None = None) -> None:
        self._secondary = secondary
        self._ffmpeg = ffmpeg_binary or settings.FFMPEG_BINARY

    @staticmethod
    def url_input(url: str) -> list[str]:
        return [
            "-user_agent", settings.FFMPEG_USER_AGENT,
            "-rw_timeout", str(settings.FFMPEG_RW_TIMEOUT_SECONDS * 1_000_000),
            "-i", url,
        ]

    @staticmethod
    def pipe_input(fd: int) -> list[str]:
        return ["-i", f"pipe:{fd}"]

    @staticmethod
    def plan_sources(plan: DeliveryPlan) -> list[RankedFormat]:
        """Inputs in ffmpeg order; substitutes last-resort audio where a merge lacks one."""
        strategy = plan.strategy
        if strategy is DeliveryStrategy.AUDIO_EXTRACT:
            if plan.audio_source is None:
                raise PipelineFailureError("Audio delivery without an audio source")
            return [plan.audio_source]

        if plan.video_source is None:
            raise PipelineFailureError(f"{strategy.value} delivery without a video source")
        if strategy is DeliveryStrategy.PASSTHROUGH:
            return [plan.video_source]
        if strategy is DeliveryStrategy.TRANSCODE_DOWNSCALE and plan.video_source.has_audio:
            return [plan.video_source]

        audio = plan.audio_source
        if audio is None:
            logger.warning(
                f"No standalone audio source for {strategy.value}; "
                "substituting last-resort audio stream"
            )
            audio = LAST_RESORT_AUDIO
        return [plan.video_source, audio]

    def build_command(self, plan: DeliveryPlan, inputs: list[list[str]]) -> list[str]:
        """Full ffmpeg argv for *plan* reading from *inputs* and writing to stdout."""
        cmd = [
            self._ffmpeg,
            "-hide_banner",
            "-nostdin",
            "-loglevel", "debug" if settings.FFMPEG_DEBUG else "error",
        ]
        for input_args in inputs:
            cmd.extend(input_args)

        audio_map = "1:a:0" if len(inputs) > 1 else "0:a:0"
        strategy = plan.strategy

        if strategy is DeliveryStrategy.AUDIO_EXTRACT:
            cmd.extend([
                "-map", "0:a:0",
                "-vn",
                "-c:a", "libmp3lame",
                "-b:a", settings.MP3_BITRATE,
                "-f", "mp3",
                "pipe:1",
            ])
            return cmd

        cmd.extend(["-map", "0:v:0", "-map", audio_map])

        if strategy is DeliveryStrategy.PASSTHROUGH:
            cmd.extend(["-c:v", "copy", "-c:a", "copy"])
        elif strategy is DeliveryStrategy.MERGE:
            cmd.extend([
                "-c:v", "copy",
                "-c:a", settings.AUDIO_CODEC,
                "-b:a", settings.AUDIO_BITRATE,
                "-shortest",
            ])
        elif strategy is DeliveryStrategy.TRANSCODE_DOWNSCALE:
            cmd.extend([
                "-vf", f"scale={plan.target_width}:{plan.target_height}",
                "-c:v", "libx264",
                "-preset", settings.DOWNSCALE_PRESET,
                "-pix_fmt", "yuv420p",
                "-c:a", settings.AUDIO_CODEC,
                "-b:a", settings.AUDIO_BITRATE,
            ])
            if len(inputs) > 1:
                cmd.append("-shortest")
        else:
            raise PipelineFailureError(f"Unsupported delivery strategy: {strategy}")

        cmd.extend(["-movflags", FRAGMENTED_MP4_FLAGS, "-f", "mp4", "pipe:1"])
        return cmd

    def _open_feeder(self, page_url: str, source: RankedFormat) -> subprocess.Popen:
        if source is LAST_RESORT_AUDIO:
            logger.warning("Opening last-resort best-audio stream (degraded path)")
        else:
            logger.info(f"No direct URL for format {source.format_id}; opening streamed fetch")
        return subprocess.Popen(
            self._secondary.stream_command(page_url, source.format_id),
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )

    def start(self, plan: DeliveryPlan, page_url: str) -> PipelineJob:
        """Start the ffmpeg job for *plan*.

        Raises:
            PipelineFailureError: If ffmpeg or a feeder cannot be started
        """
        sources = self.plan_sources(plan)
        feeders: list[subprocess.Popen] = []
        inputs: list[list[str]] = []
        pass_fds: list[int] = []

        try:
            for source in sources:
                if source.source_url:
                    inputs.append(self.url_input(source.source_url))
                    continue
                feeder = self._open_feeder(page_url, source)
                feeders.append(feeder)
                fd = feeder.stdout.fileno()
                pass_fds.append(fd)
                inputs.append(self.pipe_input(fd))

            cmd = self.build_command(plan, inputs)
            logger.info(
                f"Starting ffmpeg {plan.strategy.value} job "
                f"({len(sources)} input(s), {len(feeders)} streamed)"
            )
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                pass_fds=pass_fds,
                start_new_session=True,
            )
        except (OSError, PipelineFailureError) as e:
            for feeder in feeders:
                if feeder.poll() is None:
                    feeder.kill()
            if isinstance(e, PipelineFailureError):
                raise
            logger.error(f"Failed to start media pipeline: {e}")
            raise PipelineFailureError(f"Failed to start media pipeline: {e}")
        finally:
            # ffmpeg holds its own copies of the feeder pipes now
            for feeder in feeders:
                if feeder.stdout is not None:
                    feeder.stdout.close()

        return PipelineJob(process, feeders, description=plan.strategy.value)
