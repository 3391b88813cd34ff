"""
Pytest fixtures for cellpose_detector tests.

Provides sample images, a recording progress sink and a stand-in for the
cellpose executable.
"""

import sys
import textwrap
import threading

import numpy as np
import pytest

from cellpose_detector.core.types import CalibratedImage
from cellpose_detector.settings import CellposeSettings, DetectorCfg

# Writes one centered disk of label 1 per input image, plus a progress line
# per image into the log file. `--skip N` leaves out mask N, `--exit-code`
# sets the return code, `--garbage` writes unreadable masks.
FAKE_CELLPOSE = textwrap.dedent(
    r"""
    import argparse
    import pathlib

    import numpy as np
    import tifffile
    from skimage import io

    p = argparse.ArgumentParser()
    p.add_argument("--dir", required=True)
    p.add_argument("--log", required=True)
    p.add_argument("--skip", type=int, default=-1)
    p.add_argument("--exit-code", type=int, default=0)
    p.add_argument("--garbage", action="store_true")
    args, _ = p.parse_known_args()

    data_dir = pathlib.Path(args.dir)
    inputs = sorted(data_dir.glob("*.tif"), key=lambda f: int(f.stem))
    log_path = pathlib.Path(args.log)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "a") as log:
        log.write(f"processing {len(inputs)} image(s) in {data_dir}\n")
        for i, f in enumerate(inputs):
            img = tifffile.imread(f)
            h, w = img.shape[-2:]
            rr, cc = np.ogrid[:h, :w]
            r = min(h, w) // 4
            mask = ((rr - h // 2) ** 2 + (cc - w // 2) ** 2 <= r**2).astype(np.uint16)
            if args.garbage:
                (data_dir / f"{f.stem}_cp_masks.png").write_bytes(b"\x89PNG truncated")
            elif int(f.stem) != args.skip:
                io.imsave(data_dir / f"{f.stem}_cp_masks.png", mask, check_contrast=False)
            log.write(f"{100 * (i + 1) // len(inputs)}% done\n")
            log.flush()
    raise SystemExit(args.exit_code)
    """
)


class RecordingProgress:
    """Progress sink that keeps everything it receives."""

    def __init__(self):
        self._lock = threading.Lock()
        self.lines = []
        self.statuses = []
        self.values = []

    def log(self, message):
        with self._lock:
            self.lines.append(message)

    def set_status(self, status):
        with self._lock:
            self.statuses.append(status)

    def set_progress(self, value):
        with self._lock:
            self.values.append(value)

    @property
    def text(self):
        return "".join(self.lines)


@pytest.fixture
def progress():
    return RecordingProgress()


@pytest.fixture
def log_file(tmp_path):
    """Per-test cellpose log location; does not exist until something writes it."""
    return tmp_path / "cellpose_home" / "run.log"


@pytest.fixture
def fake_cellpose(tmp_path):
    path = tmp_path / "fake_cellpose.py"
    path.write_text(FAKE_CELLPOSE)
    return path


@pytest.fixture
def make_settings(fake_cellpose, log_file):
    """Build CellposeSettings launching the fake cellpose with extra stub options."""

    def _make(*stub_args, **kwargs):
        launcher = [sys.executable, str(fake_cellpose), "--log", str(log_file), *stub_args]
        return CellposeSettings(launcher=launcher, use_gpu=False, **kwargs)

    return _make


@pytest.fixture
def detector_cfg(log_file):
    return DetectorCfg(log_file=log_file, poll_interval_s=0.05, workspace_prefix="CellposeTest_")


@pytest.fixture
def isolated_tmpdir(tmp_path, monkeypatch):
    """Point tempfile at a private directory so leftover workspaces can be counted."""
    import tempfile

    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def time_lapse():
    """10 frames of 48x48 noise, single channel, 0.5 µm pixels, 2 s between frames."""
    rng = np.random.default_rng(0)
    data = rng.integers(0, 255, size=(10, 48, 48), dtype=np.uint8)
    return CalibratedImage(data=data, axes="TYX", calibration={"X": 0.5, "Y": 0.5, "T": 2.0}, name="movie")


@pytest.fixture
def multichannel_lapse():
    """4 frames, 2 channels, 32x40 (Y, X)."""
    data = np.arange(4 * 2 * 32 * 40, dtype=np.uint16).reshape(4, 2, 32, 40)
    return CalibratedImage(data=data, axes="TCYX", calibration={"X": 1.0, "Y": 1.0}, name="mc")


@pytest.fixture
def single_plane():
    data = np.zeros((30, 20), dtype=np.uint16)
    data[10:20, 5:15] = 1000
    return CalibratedImage(data=data, axes="YX", calibration={"X": 0.25, "Y": 0.25}, name="plane")
