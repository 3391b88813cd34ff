import logging
from pathlib import Path
from typing import List

import numpy as np
import tifffile

from ..core.errors import FrameWriteError, UnsupportedInputError
from ..core.types import CalibratedImage, Region

log = logging.getLogger("cellpose_detector")

INPUT_SUFFIX = ".tif"


def input_name(index: int) -> str:
    return f"{index:d}{INPUT_SUFFIX}"


def _canonical(image: CalibratedImage) -> np.ndarray:
    """View of the image data ordered (T, C, Y, X), adding length-1 axes where missing."""
    src = [image.axis_index(a) for a in "TCYX" if image.has_axis(a)]
    data = np.transpose(image.data, src)
    if not image.has_axis("T"):
        data = data[np.newaxis]
    if not image.has_axis("C"):
        data = data[:, np.newaxis]
    return data


def crop_frames(image: CalibratedImage, region: Region) -> List[np.ndarray]:
    """Crop `region` out of a 2D (+ channel) (+ time) image, one array per timepoint.

    Every channel is kept. Frames are returned as (C, Y, X), or (Y, X) for
    single-channel images, in region time order; the list always starts at
    local index 0 whatever the region's first frame is.
    """
    if image.has_axis("Z"):
        raise UnsupportedInputError("Image must be 2D over time, got an image with multiple Z.")
    expected = len(image.region_axes())
    if region.num_dimensions != expected:
        raise UnsupportedInputError(
            f"Region has {region.num_dimensions} dimensions, image {image.axes!r} needs {expected}."
        )

    data = _canonical(image)
    n_t, _, n_y, n_x = data.shape
    if region.min(0) < 0 or region.max(0) >= n_x or region.min(1) < 0 or region.max(1) >= n_y:
        raise UnsupportedInputError(f"Region {region} lies outside the image bounds {n_x}x{n_y}.")

    ys = slice(region.min(1), region.max(1) + 1)
    xs = slice(region.min(0), region.max(0) + 1)
    if image.has_axis("T"):
        # in the region, time is always the last dimension
        t_lo, t_hi = region.min(region.num_dimensions - 1), region.max(region.num_dimensions - 1)
        if t_lo < 0 or t_hi >= n_t:
            raise UnsupportedInputError(f"Region time range [{t_lo}, {t_hi}] outside 0..{n_t - 1}.")
        timepoints = range(t_lo, t_hi + 1)
    else:
        timepoints = range(1)

    squeeze = not image.has_axis("C")
    frames = []
    for t in timepoints:
        crop = data[t, :, ys, xs].copy()
        frames.append(crop[0] if squeeze else crop)
    return frames


def save_frames(frames: List[np.ndarray], out_dir: Path) -> List[Path]:
    paths = []
    for t, frame in enumerate(frames):
        path = Path(out_dir) / input_name(t)
        axes = "CYX" if frame.ndim == 3 else "YX"
        try:
            tifffile.imwrite(path, frame, photometric="minisblack", metadata={"axes": axes})
        except (OSError, ValueError) as e:
            raise FrameWriteError(f"Could not save time-point {t} to {path}: {e}") from e
        paths.append(path)
    log.debug("Saved %d single time-points to %s", len(paths), out_dir)
    return paths


def extract_frames(image: CalibratedImage, region: Region, out_dir: Path) -> List[Path]:
    return save_frames(crop_frames(image, region), out_dir)
