from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

KNOWN_AXES = "XYCZT"

Calibration = Tuple[float, float, float]  # (dx, dy, dz)


@dataclass(frozen=True)
class CalibratedImage:
    """An n-dimensional image with named axes and a physical scale per axis."""

    data: np.ndarray
    axes: str  # e.g. "TCYX", one letter per dimension of `data`
    calibration: Mapping[str, float] = field(default_factory=dict)
    name: str = "image"

    def __post_init__(self):
        axes = self.axes.upper()
        object.__setattr__(self, "axes", axes)
        if len(axes) != self.data.ndim:
            raise ValueError(f"Axes {axes!r} do not match array with {self.data.ndim} dimensions.")
        if len(set(axes)) != len(axes) or any(a not in KNOWN_AXES for a in axes):
            raise ValueError(f"Invalid axes {axes!r}; expected unique letters from {KNOWN_AXES!r}.")
        if "X" not in axes or "Y" not in axes:
            raise ValueError(f"Image must have X and Y axes, got {axes!r}.")

    def has_axis(self, axis: str) -> bool:
        return axis in self.axes

    def axis_index(self, axis: str) -> int:
        return self.axes.find(axis)

    def size(self, axis: str) -> int:
        idx = self.axis_index(axis)
        return int(self.data.shape[idx]) if idx >= 0 else 1

    def scale(self, axis: str) -> float:
        return float(self.calibration.get(axis, 1.0) or 1.0)

    def spatial_calibration(self) -> Calibration:
        return self.scale("X"), self.scale("Y"), self.scale("Z")

    def frame_interval(self) -> float:
        return self.scale("T") if self.has_axis("T") else 1.0

    def region_axes(self) -> str:
        """Axes a `Region` spans for this image: X, Y, then Z and T when present."""
        return "".join(a for a in "XYZT" if self.has_axis(a))


@dataclass(frozen=True)
class Region:
    """Inclusive integer box over the non-channel axes (X, Y[, Z][, T])."""

    mins: Tuple[int, ...]
    maxs: Tuple[int, ...]

    def __post_init__(self):
        mins = tuple(int(v) for v in self.mins)
        maxs = tuple(int(v) for v in self.maxs)
        if len(mins) != len(maxs):
            raise ValueError(f"Region mins {mins} and maxs {maxs} differ in length.")
        if len(mins) < 2:
            raise ValueError("Region needs at least the X and Y dimensions.")
        for d, (lo, hi) in enumerate(zip(mins, maxs)):
            if lo > hi:
                raise ValueError(f"Region dimension {d}: min {lo} > max {hi}.")
        object.__setattr__(self, "mins", mins)
        object.__setattr__(self, "maxs", maxs)

    @classmethod
    def full(cls, image: CalibratedImage) -> "Region":
        axes = image.region_axes()
        return cls(tuple(0 for _ in axes), tuple(image.size(a) - 1 for a in axes))

    @property
    def num_dimensions(self) -> int:
        return len(self.mins)

    def min(self, d: int) -> int:
        return self.mins[d]

    def max(self, d: int) -> int:
        return self.maxs[d]

    def extent(self, d: int) -> int:
        return self.maxs[d] - self.mins[d] + 1


@dataclass
class Spot:
    x: float
    y: float
    z: float = 0.0
    t: float = 0.0
    frame: int = 0
    features: Dict[str, float] = field(default_factory=dict)
    contour: Optional[np.ndarray] = None  # (N, 2) x/y polygon relative to (x, y)

    @property
    def position(self) -> Tuple[float, float, float]:
        return self.x, self.y, self.z


class SpotCollection:
    """Spots grouped by frame."""

    def __init__(self, by_frame: Optional[Mapping[int, List[Spot]]] = None):
        self._by_frame: Dict[int, List[Spot]] = {int(k): list(v) for k, v in (by_frame or {}).items()}

    @classmethod
    def from_spots(cls, spots: Iterable[Spot]) -> "SpotCollection":
        grouped: Dict[int, List[Spot]] = defaultdict(list)
        for s in spots:
            grouped[int(s.frame)].append(s)
        return cls(grouped)

    def frames(self) -> List[int]:
        return sorted(f for f, spots in self._by_frame.items() if spots)

    def n_spots(self, frame: Optional[int] = None) -> int:
        if frame is not None:
            return len(self._by_frame.get(frame, []))
        return sum(len(v) for v in self._by_frame.values())

    def iter_spots(self, frame: Optional[int] = None) -> Iterator[Spot]:
        if frame is not None:
            yield from self._by_frame.get(frame, [])
            return
        for f in sorted(self._by_frame):
            yield from self._by_frame[f]

    def __iter__(self) -> Iterator[Spot]:
        return self.iter_spots()

    def __len__(self) -> int:
        return self.n_spots()

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for s in self.iter_spots():
            rows.append(
                {
                    "frame": int(s.frame),
                    "x": float(s.x),
                    "y": float(s.y),
                    "z": float(s.z),
                    "t": float(s.t),
                    **{k.lower(): float(v) for k, v in s.features.items()},
                }
            )
        return pd.DataFrame(rows, columns=None if rows else ["frame", "x", "y", "z", "t"])


@dataclass
class LabelStack:
    labels: np.ndarray  # (T, Y, X) integer labels
    calibration: Calibration
    n_frames: int
    n_slices: int = 1
    name: str = "labels"
