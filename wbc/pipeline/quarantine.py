import logging
import shutil
from pathlib import Path
from typing import Optional

from wbc.domain.models import FileTask


def quarantine_dir(root: Path, prefix: str = "@failed_vc_") -> Path:
    """Sibling of the conversion root that collects unconvertible sources."""
    root = Path(root)
    return root.parent / f"{prefix}{root.name}"


def quarantine_path(task: FileTask, prefix: str = "@failed_vc_") -> Path:
    return quarantine_dir(task.root, prefix) / task.relative_path


def move_to_quarantine(
    task: FileTask,
    prefix: str = "@failed_vc_",
    logger: Optional[logging.Logger] = None,
) -> Optional[Path]:
    """Moves the task's source under the quarantine directory, keeping its relative path.

    Returns the new location, or None when nothing was moved. Failures are
    logged and never raised.
    """
    logger = logger or logging.getLogger(__name__)
    dest = quarantine_path(task, prefix)
    try:
        if not task.path.exists():
            logger.info(f"Original file {task.path.name} was already removed or moved.")
            return None
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(task.path), str(dest))
    except OSError as e:
        logger.error(f"Failed to move file {task.path} to {dest} after conversion error: {e}")
        return None

    logger.info(f"Moved failed file to: {dest}")
    return dest
