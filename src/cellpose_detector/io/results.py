import logging
from pathlib import Path

import numpy as np
from skimage import io as skio

from ..core.errors import MissingResultError, ObjectExtractionError
from ..core.types import Calibration, LabelStack

log = logging.getLogger("cellpose_detector")

RESULT_SUFFIX = "_cp_masks.png"


def result_name(index: int) -> str:
    return f"{index:d}{RESULT_SUFFIX}"


def collect_masks(
    out_dir: Path,
    count: int,
    calibration: Calibration,
    *,
    n_slices: int = 1,
    name: str = "image",
) -> LabelStack:
    """Read back `count` cellpose masks and stack them in time order.

    Raises MissingResultError for the first absent mask; nothing is returned
    unless every timepoint is present.
    """
    masks = []
    for t in range(count):
        path = Path(out_dir) / result_name(t)
        if not path.is_file():
            raise MissingResultError(t, path)
        try:
            mask = np.asarray(skio.imread(path))
        except (OSError, ValueError) as e:
            raise ObjectExtractionError(f"Could not read results file {path.name}: {e}") from e
        if mask.ndim != 2:
            raise ObjectExtractionError(f"Mask {path.name} is not a 2D label image (shape {mask.shape}).")
        masks.append(mask)

    shapes = {m.shape for m in masks}
    if len(shapes) > 1:
        raise ObjectExtractionError(f"Cellpose masks differ in shape: {sorted(shapes)}")

    labels = np.stack(masks, axis=0) if masks else np.empty((0, 0, 0), np.uint16)
    log.debug("Read %d masks of shape %s", count, labels.shape[1:])
    return LabelStack(
        labels=labels,
        calibration=tuple(float(c) for c in calibration),
        n_frames=count,
        n_slices=n_slices,
        name=f"{name}_CellposeOutput",
    )
