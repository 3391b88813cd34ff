from pathlib import Path
from typing import Dict, Optional, Tuple

import numpy as np
import tifffile
from readlif.reader import LifFile

from ..core.types import CalibratedImage

# tifffile series axes -> ours; 'S' (samples) is treated as channels
_TIFF_AXES = {"X": "X", "Y": "Y", "Z": "Z", "T": "T", "C": "C", "S": "C", "I": "T", "Q": "T"}


def _inv(v) -> Optional[float]:
    try:
        return 1.0 / float(v) if v and float(v) > 0 else None
    except (TypeError, ValueError):
        return None


def spacing_um_from_lif(img) -> Tuple[Optional[float], Optional[float], Optional[float]]:
    """Return (dx, dy, dt) in µm / s, or None where missing."""
    # img.scale: (px_per_um x, px_per_um y, px_per_um z, images_per_sec or None)
    sx, sy, _, st = img.scale
    return _inv(sx), _inv(sy), _inv(st)


def load_lif(path: Path, series: int = 0, defaults: Optional[Dict[str, float]] = None) -> CalibratedImage:
    """Load one LIF series as a (T, C, Y, X) image, or (T, C, Z, Y, X) with several planes."""
    lif = LifFile(str(path))
    img = lif.get_image(series)
    n_t, n_c, n_z = int(img.dims.t), int(img.channels), int(img.dims.z)

    planes = np.stack(
        [
            np.stack([np.stack([np.asarray(img.get_frame(z=z, t=t, c=c)) for z in range(n_z)]) for c in range(n_c)])
            for t in range(n_t)
        ]
    )  # (T, C, Z, Y, X)
    if n_z == 1:
        data, axes = planes[:, :, 0], "TCYX"
    else:
        data, axes = planes, "TCZYX"

    cal = dict(defaults or {})
    dx, dy, dt = spacing_um_from_lif(img)
    cal.update({k: v for k, v in (("X", dx), ("Y", dy), ("T", dt)) if v})
    return CalibratedImage(data=data, axes=axes, calibration=cal, name=getattr(img, "name", f"series_{series}"))


def _resolution_spacing(page, tag: str) -> Optional[float]:
    """Pixel size from an X/YResolution tag; 1 pixel per unit means uncalibrated."""
    res = page.tags.get(tag)
    if res is None:
        return None
    try:
        num, den = res.value
        px_per_unit = float(num) / float(den)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    if px_per_unit == 1.0:
        return None
    return _inv(px_per_unit)


def _ome_pixels(tif) -> Dict:
    if not tif.is_ome or not tif.ome_metadata:
        return {}
    image = tifffile.xml2dict(tif.ome_metadata).get("OME", {}).get("Image", {})
    if isinstance(image, list):
        image = image[0] if image else {}
    return image.get("Pixels", {}) or {}


def spacing_from_tiff(tif) -> Dict[str, float]:
    """Calibration stored in the file: OME physical sizes, else ImageJ resolution tags and frame interval."""
    cal: Dict[str, float] = {}
    pixels = _ome_pixels(tif)
    for axis, key in (("X", "PhysicalSizeX"), ("Y", "PhysicalSizeY"), ("T", "TimeIncrement")):
        try:
            v = float(pixels.get(key) or 0)
        except (TypeError, ValueError):
            v = 0.0
        if v > 0:
            cal[axis] = v

    page = tif.pages[0]
    for axis, tag in (("X", "XResolution"), ("Y", "YResolution")):
        if axis not in cal:
            v = _resolution_spacing(page, tag)
            if v:
                cal[axis] = v

    ij = tif.imagej_metadata or {}
    if "T" not in cal:
        try:
            finterval = float(ij.get("finterval") or 0)
        except (TypeError, ValueError):
            finterval = 0.0
        if finterval > 0:
            cal["T"] = finterval
    return cal


def load_tiff(path: Path, defaults: Optional[Dict[str, float]] = None) -> CalibratedImage:
    with tifffile.TiffFile(path) as tif:
        series = tif.series[0]
        data = series.asarray()
        src_axes = series.axes.upper()
        stored = spacing_from_tiff(tif)

    axes = "".join(_TIFF_AXES.get(a, "?") for a in src_axes)
    if "?" in axes or len(set(axes)) != len(axes):
        raise ValueError(f"Unsupported TIFF axes {src_axes!r} in {path}")
    cal = dict(defaults or {})
    cal.update(stored)
    return CalibratedImage(data=data, axes=axes, calibration=cal, name=Path(path).stem)


def load_image(path: Path, series: int = 0, defaults: Optional[Dict[str, float]] = None) -> CalibratedImage:
    path = Path(path)
    if path.suffix.lower() == ".lif":
        return load_lif(path, series, defaults)
    return load_tiff(path, defaults)
