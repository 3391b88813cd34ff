import logging
from typing import Callable, List, Optional

import numpy as np
from skimage.measure import approximate_polygon, find_contours, regionprops
from skimage.measure import label as cc_label

from ..core.errors import ObjectExtractionError
from ..core.types import LabelStack, Spot, SpotCollection

log = logging.getLogger("cellpose_detector")

# Douglas-Peucker tolerance, in pixels, used when simplifying contours
SIMPLIFY_TOLERANCE_PX = 1.0

SpotExtractor = Callable[[LabelStack, bool], SpotCollection]


def _outline(region, simplify: bool) -> Optional[np.ndarray]:
    """Longest iso-contour of a region, as (row, col) pixel coordinates."""
    padded = np.pad(region.image, 1).astype(np.float32)
    contours = find_contours(padded, 0.5)
    if not contours:
        return None
    contour = max(contours, key=len)
    if simplify and len(contour) > 4:
        contour = approximate_polygon(contour, tolerance=SIMPLIFY_TOLERANCE_PX)
    minr, minc = region.bbox[0], region.bbox[1]
    return contour + np.array([minr - 1, minc - 1], dtype=float)


def _perimeter(xy: np.ndarray) -> float:
    closed = np.vstack([xy, xy[:1]])
    return float(np.hypot(*np.diff(closed, axis=0).T).sum())


def spots_from_frame(labels: np.ndarray, frame: int, dx: float, dy: float, simplify: bool) -> List[Spot]:
    # same label value but disconnected -> separate spots
    components = cc_label(labels, background=0, connectivity=2)
    spots = []
    for p in regionprops(components):
        row, col = p.centroid
        x, y = float(col * dx), float(row * dy)
        area = float(p.area * dx * dy)

        contour = None
        outline = _outline(p, simplify)
        if outline is not None:
            contour = np.column_stack([outline[:, 1] * dx - x, outline[:, 0] * dy - y])
        perimeter = _perimeter(contour) if contour is not None and len(contour) > 1 else float(p.perimeter * dx)

        r0, c0 = p.coords[0]
        scale = 0.5 * (dx + dy)
        spots.append(
            Spot(
                x=x,
                y=y,
                z=0.0,
                t=float(frame),
                frame=frame,
                features={
                    "QUALITY": area,
                    "AREA": area,
                    "PERIMETER": perimeter,
                    "RADIUS": float(np.sqrt(area / np.pi)),
                    "CIRCULARITY": float(4.0 * np.pi * area / perimeter**2) if perimeter > 0 else 0.0,
                    "ELLIPSE_MAJOR": float(p.axis_major_length * scale / 2.0),
                    "ELLIPSE_MINOR": float(p.axis_minor_length * scale / 2.0),
                    "LABEL": float(labels[r0, c0]),
                },
                contour=contour,
            )
        )
    return spots


def labels_to_spots(stack: LabelStack, simplify_contours: bool) -> SpotCollection:
    """Turn a (T, Y, X) label stack into spots, in stack-local coordinates."""
    labels = np.asarray(stack.labels)
    if labels.ndim != 3:
        raise ObjectExtractionError(f"Label stack must be (T, Y, X), got shape {labels.shape}.")
    if not np.issubdtype(labels.dtype, np.integer):
        raise ObjectExtractionError(f"Label stack must hold integer labels, got {labels.dtype}.")
    if labels.shape[0] != stack.n_frames:
        raise ObjectExtractionError(f"Label stack has {labels.shape[0]} frames, expected {stack.n_frames}.")

    dx, dy = float(stack.calibration[0]), float(stack.calibration[1])
    spots: List[Spot] = []
    for t in range(labels.shape[0]):
        found = spots_from_frame(labels[t], t, dx, dy, simplify_contours)
        log.debug("Frame %d: %d spots", t, len(found))
        spots.extend(found)
    return SpotCollection.from_spots(spots)
