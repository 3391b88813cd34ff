from dataclasses import replace
from typing import Iterable, List

from ..core.types import Calibration, Region, Spot

N_SPATIAL = 2  # X and Y; volumetric input is rejected before detection


def reproject(
    spots: Iterable[Spot],
    region: Region,
    calibration: Calibration,
    min_t: int,
    frame_interval: float,
) -> List[Spot]:
    """Move spots from region-local to image coordinates.

    Positions are shifted by the region origin times the pixel size, frames by
    `min_t`, and time is recomputed from the new frame. Input spots are left
    untouched.
    """
    out = []
    for spot in spots:
        pos = list(spot.position)
        for d in range(N_SPATIAL):
            pos[d] += region.min(d) * calibration[d]
        frame = int(spot.frame) + int(min_t)
        out.append(
            replace(
                spot,
                x=pos[0],
                y=pos[1],
                z=pos[2],
                frame=frame,
                t=frame * frame_interval,
                features=dict(spot.features),
            )
        )
    return out
