import pytest
import subprocess
import threading
import time
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Set
from wbc.config.models import AppConfig
from wbc.domain.models import MediaSummary
from wbc.infrastructure.event_bus import EventBus

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config():
    """Returns a sample AppConfig object for testing."""
    return AppConfig(
        general={
            "parallel": 2,
            "dry_run": False,
            "target_extension": ".webm",
            "extensions": [],
            "failed_dir_prefix": "@failed_vc_",
            "stderr_tail_lines": 5,
            "debug": False,
        },
    )

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "wbc.yaml"

    content = {
        'general': {
            'parallel': 3,
            'extensions': ['mp4', '.MOV'],
            'stderr_tail_lines': 10,
        },
        'encoder': {
            'video_codec': 'libvpx-vp9',
            'audio_codec': 'libopus',
            'cpu_used': 2,
        },
        'quality': {
            'default_crf': 30,
            'tiers': [
                {'name': '4k', 'crf': 28, 'min_height': 2160},
                {'name': 'hd', 'crf': 26, 'min_height': 720},
                {'name': 'sd', 'crf': 18},
            ]
        }
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def media_root(tmp_path):
    """Creates the a.mp4 / b.mov / c.webm conversion root."""
    root = tmp_path / "videos"
    root.mkdir()
    (root / "a.mp4").write_bytes(b"a" * 2048)
    (root / "b.mov").write_bytes(b"b" * 1024)
    (root / "c.webm").write_bytes(b"c" * 512)
    return root

@pytest.fixture
def nested_media_root(tmp_path):
    """Creates a deeper tree with subdirectories."""
    root = tmp_path / "library"
    (root / "2023" / "trip").mkdir(parents=True)
    (root / "2024").mkdir()
    (root / "clip1.mp4").write_bytes(b"x" * 100)
    (root / "2023" / "clip2.MOV").write_bytes(b"x" * 100)
    (root / "2023" / "trip" / "clip3.avi").write_bytes(b"x" * 100)
    (root / "2024" / "done.webm").write_bytes(b"x" * 100)
    (root / "2024" / "clip4.mkv").write_bytes(b"x" * 100)
    return root

def snapshot_tree(root: Path) -> Dict[str, bytes]:
    """Relative path -> content for every file under root (and its siblings)."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }

# ============================================================================
# External Tool Fakes
# ============================================================================

SCENARIO_SUMMARIES = {
    "a.mp4": MediaSummary(width=1920, height=1080, bit_rate=6_000_000),
    "b.mov": MediaSummary(width=640, height=480, bit_rate=1_000_000),
}

class FakeFFprobe:
    """Stands in for FFprobeAdapter; returns canned summaries by file name."""

    def __init__(self, summaries: Optional[Dict[str, MediaSummary]] = None, delay: float = 0.0):
        self.summaries = dict(SCENARIO_SUMMARIES if summaries is None else summaries)
        self.delay = delay
        self.calls: List[Path] = []
        self._lock = threading.Lock()

    def inspect(self, file_path: Path) -> Optional[MediaSummary]:
        with self._lock:
            self.calls.append(Path(file_path))
        if self.delay:
            time.sleep(self.delay)
        return self.summaries.get(Path(file_path).name)

class FakeFFmpeg:
    """Stands in for FFmpegAdapter.

    Writes the output file and exits 0, unless the source name is listed in
    `fail` (partial output + exit 1), `spawn_error` (raises OSError) or
    `hang` (partial output, then blocks until the shutdown event is set and
    exits 255 like an interrupted ffmpeg). Tracks how many encodes ran at
    the same time.
    """

    def __init__(
        self,
        fail: Optional[Set[str]] = None,
        spawn_error: Optional[Set[str]] = None,
        delay: float = 0.0,
        hang: Optional[Set[str]] = None,
    ):
        self.fail = set(fail or ())
        self.spawn_error = set(spawn_error or ())
        self.hang = set(hang or ())
        self.delay = delay
        self.calls: List[tuple] = []
        self.active = 0
        self.max_active = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def encode(
        self,
        input_path: Path,
        output_path: Path,
        crf: int,
        shutdown_event: Optional[threading.Event] = None,
    ) -> subprocess.CompletedProcess:
        with self._lock:
            self.calls.append((input_path.name, output_path.name, crf))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if input_path.name in self.spawn_error:
                raise FileNotFoundError(2, "No such file or directory", "ffmpeg")
            if input_path.name in self.hang:
                output_path.write_bytes(b"partial")
                self.started.set()
                interrupted = shutdown_event is not None and shutdown_event.wait(timeout=5)
                return subprocess.CompletedProcess([], 255 if interrupted else 0, stdout=None, stderr="Exiting normally, received signal 15.")
            if self.delay:
                time.sleep(self.delay)
            if input_path.name in self.fail:
                output_path.write_bytes(b"partial")
                return subprocess.CompletedProcess([], 1, stdout=None, stderr="Invalid data found when processing input")
            output_path.write_bytes(b"webm:" + input_path.read_bytes())
            return subprocess.CompletedProcess([], 0, stdout=None, stderr="")
        finally:
            with self._lock:
                self.active -= 1

@pytest.fixture
def fake_ffprobe():
    return FakeFFprobe()

@pytest.fixture
def fake_ffmpeg():
    return FakeFFmpeg()

@pytest.fixture
def ffmpeg_factory():
    """Builds FakeFFmpeg instances with per-test failure sets."""
    return FakeFFmpeg

@pytest.fixture
def ffprobe_factory():
    return FakeFFprobe

@pytest.fixture
def tree_snapshot():
    return snapshot_tree

# ============================================================================
# Marker registration
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
