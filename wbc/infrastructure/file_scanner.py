import logging
import os
import stat
from pathlib import Path
from typing import Iterable, Iterator, Optional
from wbc.domain.events import DiscoveryWarning
from wbc.domain.models import FileTask
from wbc.infrastructure.event_bus import EventBus

class FileScanner:
    """Recursively scans a conversion root for files not yet in the target container."""

    def __init__(
        self,
        target_extension: str,
        include_extensions: Optional[Iterable[str]] = None,
        event_bus: Optional[EventBus] = None,
    ):
        ext = target_extension.lower()
        self.target_extension = ext if ext.startswith(".") else f".{ext}"
        self.include_extensions = {
            (e if e.startswith(".") else f".{e}").lower() for e in (include_extensions or [])
        }
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

    def _on_walk_error(self, error: OSError):
        directory = Path(error.filename) if error.filename else Path("?")
        message = error.strerror or str(error)
        self.logger.warning(f"Cannot read directory {directory}: {message}")
        if self.event_bus:
            self.event_bus.publish(DiscoveryWarning(directory=directory, error_message=message))

    def _is_candidate(self, file_path: Path) -> bool:
        suffix = file_path.suffix.lower()
        if suffix == self.target_extension:
            return False
        if self.include_extensions and suffix not in self.include_extensions:
            return False
        try:
            mode = os.lstat(file_path).st_mode
        except OSError as e:
            self.logger.warning(f"Cannot stat {file_path}: {e}")
            return False
        # Symlinks, sockets, fifos and devices are never converted
        return stat.S_ISREG(mode)

    def scan(self, root_dir: Path) -> Iterator[FileTask]:
        """Scans the directory and yields FileTask objects in a deterministic order."""
        root_dir = Path(root_dir).resolve()
        for root, dirs, files in os.walk(str(root_dir), onerror=self._on_walk_error):
            root_path = Path(root)

            # Ensure deterministic traversal: sort directories and files
            dirs.sort()
            files.sort()

            for file_name in files:
                file_path = root_path / file_name
                if self._is_candidate(file_path):
                    yield FileTask(path=file_path, root=root_dir)
