import logging
from pathlib import Path
from typing import Optional

def setup_logging(log_path: Optional[Path] = None, debug: bool = False) -> logging.Logger:
    """
    Setup logging configuration for WBC.

    The console belongs to the progress line, so records only go to a file.
    Without a log path a NullHandler is installed and nothing is written.
    Returns configured logger instance.

    Args:
        log_path: Optional path to the log file (parent directories are created)
        debug: If True, enable DEBUG level logging with detailed timings
    """
    level = logging.DEBUG if debug else logging.INFO

    if log_path is not None:
        log_file = Path(log_path)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers = [logging.FileHandler(log_file)]
    else:
        log_file = None
        handlers = [logging.NullHandler()]

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file or 'disabled'} (debug={'ON' if debug else 'OFF'})")

    return logger
