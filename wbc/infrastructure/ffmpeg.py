import subprocess
import logging
import threading
import time
from pathlib import Path
from typing import List, Optional
from wbc.config.models import EncoderConfig

class FFmpegAdapter:
    """Wrapper around ffmpeg for single-file WebM encoding."""

    poll_interval = 0.2

    def __init__(self, encoder: Optional[EncoderConfig] = None, executable: str = "ffmpeg", debug: bool = False):
        self.encoder = encoder or EncoderConfig()
        self.executable = executable
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _build_command(self, input_path: Path, output_path: Path, crf: int) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.executable,
            "-i", str(input_path),
            "-c:v", self.encoder.video_codec,
            "-crf", str(crf),
            "-b:v", "0",  # Constant quality mode for libvpx
            "-c:a", self.encoder.audio_codec,
        ]
        if self.encoder.cpu_used is not None:
            cmd.extend(["-cpu-used", str(self.encoder.cpu_used)])
        cmd.extend(self.encoder.extra_args)
        # Overwrite leftovers from an earlier aborted run of this same file
        cmd.extend(["-y", str(output_path)])
        return cmd

    def encode(
        self,
        input_path: Path,
        output_path: Path,
        crf: int,
        shutdown_event: Optional[threading.Event] = None,
    ) -> subprocess.CompletedProcess:
        """Runs ffmpeg to completion and returns the finished process.

        stderr is captured for diagnostics. Raises OSError when ffmpeg cannot
        be spawned; a non-zero exit is reported through returncode.

        ffmpeg runs in its own session so a terminal Ctrl+C reaches only this
        process. When `shutdown_event` is set the encode is terminated and the
        (non-zero) exit code is returned.
        """
        filename = input_path.name
        start_time = time.monotonic() if self.debug else None

        cmd = self._build_command(input_path, output_path, crf)
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {' '.join(cmd)}")

        process = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )

        while True:
            try:
                _, stderr = process.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if shutdown_event is not None and shutdown_event.is_set():
                    self.logger.info(f"FFMPEG_INTERRUPTED: {filename} (shutdown signal)")
                    process.terminate()
                    try:
                        _, stderr = process.communicate(timeout=3)
                    except subprocess.TimeoutExpired:
                        process.kill()
                        _, stderr = process.communicate()
                    break

        if self.debug and start_time:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"FFMPEG_END: {filename} code={process.returncode} elapsed={elapsed:.2f}s")
        return subprocess.CompletedProcess(cmd, process.returncode, stdout=None, stderr=stderr)


def check_tool(executable: str) -> bool:
    """Returns True when `<executable> -version` runs and exits cleanly."""
    logger = logging.getLogger(__name__)
    try:
        result = subprocess.run(
            [executable, "-version"],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as e:
        logger.error(f"{executable} spawn error: {e}")
        return False
    if result.returncode != 0:
        logger.error(f"{executable} -version exited with code {result.returncode}")
        return False
    return True
