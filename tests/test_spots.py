"""
Tests for turning label stacks into spots and moving them into image coordinates.
"""

import numpy as np
import pytest

from cellpose_detector.core.errors import ObjectExtractionError
from cellpose_detector.core.types import LabelStack, Region, Spot, SpotCollection
from cellpose_detector.feat.reproject import reproject
from cellpose_detector.feat.spots import labels_to_spots


def _disk(shape, center, radius, value=1):
    rr, cc = np.ogrid[: shape[0], : shape[1]]
    mask = (rr - center[0]) ** 2 + (cc - center[1]) ** 2 <= radius**2
    out = np.zeros(shape, np.uint16)
    out[mask] = value
    return out


def _stack(frames, calibration=(1.0, 1.0, 1.0)):
    labels = np.stack(frames)
    return LabelStack(labels=labels, calibration=calibration, n_frames=len(frames))


class TestLabelsToSpots:
    def test_one_spot_per_label(self):
        frame = _disk((40, 40), (10, 10), 4, value=1) + _disk((40, 40), (28, 30), 5, value=2)
        spots = labels_to_spots(_stack([frame]), simplify_contours=False)

        assert spots.n_spots() == 2
        labels = sorted(s.features["LABEL"] for s in spots)
        assert labels == [1.0, 2.0]

    def test_centroid_and_area_are_calibrated(self):
        frame = _disk((40, 40), (12, 20), 5)
        spots = labels_to_spots(_stack([frame], (0.5, 0.25, 1.0)), simplify_contours=False)

        (spot,) = list(spots)
        assert spot.x == pytest.approx(20 * 0.5)
        assert spot.y == pytest.approx(12 * 0.25)
        assert spot.features["AREA"] == pytest.approx(frame.sum() * 0.5 * 0.25)
        assert spot.features["QUALITY"] == spot.features["AREA"]
        assert spot.frame == 0

    def test_frames_are_local(self):
        frames = [_disk((20, 20), (10, 10), 3) for _ in range(3)]
        spots = labels_to_spots(_stack(frames), simplify_contours=True)

        assert spots.frames() == [0, 1, 2]
        assert all(spots.n_spots(f) == 1 for f in range(3))

    def test_disconnected_label_gives_two_spots(self):
        frame = np.zeros((20, 20), np.uint16)
        frame[2:5, 2:5] = 3
        frame[12:16, 12:16] = 3
        spots = labels_to_spots(_stack([frame]), simplify_contours=False)

        assert spots.n_spots() == 2
        assert {s.features["LABEL"] for s in spots} == {3.0}

    def test_empty_frame_gives_no_spots(self):
        spots = labels_to_spots(_stack([np.zeros((10, 10), np.uint16)]), simplify_contours=False)
        assert len(spots) == 0
        assert spots.frames() == []

    def test_contour_relative_to_center(self):
        frame = _disk((60, 60), (30, 30), 12)
        (spot,) = list(labels_to_spots(_stack([frame]), simplify_contours=False))

        assert spot.contour is not None
        assert spot.contour.shape[1] == 2
        radii = np.hypot(spot.contour[:, 0], spot.contour[:, 1])
        assert np.all(np.abs(radii - 12) < 1.5)

    def test_simplified_contour_has_fewer_points(self):
        frame = _disk((60, 60), (30, 30), 12)
        full = list(labels_to_spots(_stack([frame]), simplify_contours=False))[0]
        simple = list(labels_to_spots(_stack([frame]), simplify_contours=True))[0]

        assert len(simple.contour) < len(full.contour)

    def test_rejects_float_labels(self):
        stack = LabelStack(labels=np.zeros((1, 5, 5), np.float32), calibration=(1, 1, 1), n_frames=1)
        with pytest.raises(ObjectExtractionError, match="integer"):
            labels_to_spots(stack, False)

    def test_rejects_wrong_shape(self):
        stack = LabelStack(labels=np.zeros((5, 5), np.uint16), calibration=(1, 1, 1), n_frames=1)
        with pytest.raises(ObjectExtractionError, match="T, Y, X"):
            labels_to_spots(stack, False)


def _spot(x, y, frame):
    return Spot(x=x, y=y, frame=frame, t=float(frame), features={"AREA": 1.0})


class TestReproject:
    def test_shifts_position_frame_and_time(self):
        spots = [_spot(1.0, 2.0, 0), _spot(3.0, 4.0, 2)]
        region = Region((10, 20, 5), (40, 50, 7))

        out = reproject(spots, region, (0.5, 0.25, 1.0), min_t=5, frame_interval=2.0)

        assert (out[0].x, out[0].y) == pytest.approx((1.0 + 5.0, 2.0 + 5.0))
        assert [s.frame for s in out] == [5, 7]
        assert [s.t for s in out] == pytest.approx([10.0, 14.0])

    def test_zero_offset_is_identity(self):
        spots = [_spot(1.5, 2.5, 0), _spot(3.0, 4.0, 1)]
        zero = Region((0, 0, 0), (10, 10, 1))

        once = reproject(spots, zero, (0.7, 0.7, 1.0), 0, 1.0)
        twice = reproject(once, zero, (0.7, 0.7, 1.0), 0, 1.0)

        for a, b in zip(spots, twice):
            assert (a.x, a.y, a.frame, a.t) == (b.x, b.y, b.frame, b.t)

    def test_offsets_compose(self):
        spots = [_spot(1.0, 1.0, 0)]
        cal = (0.5, 0.5, 1.0)
        step_x = reproject(spots, Region((8, 0), (20, 20)), cal, 0, 1.0)
        both = reproject(step_x, Region((0, 8), (20, 20)), cal, 0, 1.0)
        direct = reproject(spots, Region((8, 8), (20, 20)), cal, 0, 1.0)

        assert (both[0].x, both[0].y) == pytest.approx((direct[0].x, direct[0].y))

    def test_inputs_untouched(self):
        spot = _spot(1.0, 1.0, 0)
        reproject([spot], Region((5, 5, 3), (9, 9, 3)), (1.0, 1.0, 1.0), 3, 1.0)
        assert (spot.x, spot.y, spot.frame) == (1.0, 1.0, 0)


class TestSpotCollection:
    def test_grouped_by_frame(self):
        spots = SpotCollection.from_spots([_spot(0, 0, 2), _spot(1, 1, 0), _spot(2, 2, 2)])

        assert spots.frames() == [0, 2]
        assert spots.n_spots(2) == 2
        assert [s.frame for s in spots] == [0, 2, 2]

    def test_to_dataframe(self):
        df = SpotCollection.from_spots([_spot(1.0, 2.0, 3)]).to_dataframe()

        assert list(df.columns[:5]) == ["frame", "x", "y", "z", "t"]
        assert df.loc[0, "area"] == 1.0
        assert df.loc[0, "frame"] == 3

    def test_empty_dataframe_has_columns(self):
        df = SpotCollection().to_dataframe()
        assert len(df) == 0
        assert "frame" in df.columns
