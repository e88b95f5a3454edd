import subprocess
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import ValidationError
from wbc.domain.events import ConsoleMessage
from wbc.domain.models import MediaSummary
from wbc.infrastructure.event_bus import EventBus

class FFprobeAdapter:
    """Wrapper around ffprobe to extract the first video stream's geometry and bit rate."""

    def __init__(self, event_bus: Optional[EventBus] = None, executable: str = "ffprobe"):
        self.event_bus = event_bus
        self.executable = executable
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_int(value: Any) -> Optional[int]:
        if value is None or isinstance(value, bool):
            return None
        try:
            return int(str(value).strip())
        except (TypeError, ValueError):
            pass
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            return None

    def _build_command(self, file_path: Path):
        return [
            self.executable,
            "-v", "quiet",
            "-print_format", "json",
            "-show_streams",
            "-select_streams", "v:0",
            str(file_path)
        ]

    def get_stream_info(self, file_path: Path) -> Dict[str, Any]:
        """Executes ffprobe and parses JSON output.

        Raises RuntimeError on a non-zero exit, json.JSONDecodeError on
        unparseable output and ValueError when there is no video stream.
        """
        cmd = self._build_command(file_path)

        result = subprocess.run(cmd, capture_output=True, text=True, errors="replace", stdin=subprocess.DEVNULL)
        if result.returncode != 0:
            raise RuntimeError(f"ffprobe failed for {file_path}: status {result.returncode}")

        data = json.loads(result.stdout)

        streams = data.get("streams") if isinstance(data, dict) else None
        video_stream = next(
            (s for s in (streams or []) if isinstance(s, dict) and s.get("codec_type", "video") == "video"),
            None,
        )
        if not video_stream:
            raise ValueError(f"No video stream found in {file_path}")

        return {
            "width": self._to_int(video_stream.get("width")),
            "height": self._to_int(video_stream.get("height")),
            "bit_rate": self._to_int(video_stream.get("bit_rate")),
            "codec": video_stream.get("codec_name", "unknown"),
        }

    def _warn(self, message: str):
        self.logger.warning(message)
        if self.event_bus:
            self.event_bus.publish(ConsoleMessage(level="warning", message=message))

    def inspect(self, file_path: Path) -> Optional[MediaSummary]:
        """Returns a MediaSummary, or None when the file cannot be inspected.

        Never raises for probe failures; the caller falls back to the default CRF.
        """
        name = Path(file_path).name
        try:
            info = self.get_stream_info(file_path)
        except OSError as e:
            self._warn(f"ffprobe spawn error for {name}: {e}")
            return None
        except RuntimeError as e:
            self._warn(f"ffprobe failed for {name}: {e}")
            return None
        except json.JSONDecodeError as e:
            self._warn(f"Error parsing ffprobe output for {name}: {e}")
            return None
        except ValueError:
            self._warn(f"No video stream found in {name}")
            return None

        bit_rate = info.get("bit_rate")
        if bit_rate is not None and bit_rate <= 0:
            bit_rate = None
        try:
            summary = MediaSummary(width=info.get("width"), height=info.get("height"), bit_rate=bit_rate)
        except ValidationError:
            self._warn(f"Could not parse width/height for {name}")
            return None

        self.logger.debug(
            f"PROBE: {name} {summary.width}x{summary.height} "
            f"bit_rate={summary.bit_rate if summary.bit_rate is not None else 'N/A'}"
        )
        return summary
