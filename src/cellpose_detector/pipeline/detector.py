import logging
import time
from typing import Optional

from ..core.errors import DetectorError, ObjectExtractionError, UnsupportedInputError
from ..core.types import CalibratedImage, Region, SpotCollection
from ..core.workspace import Workspace
from ..feat.reproject import reproject
from ..feat.spots import SpotExtractor, labels_to_spots
from ..io.frames import crop_frames, save_frames
from ..io.results import collect_masks
from ..progress import ProgressSink, VoidProgress
from ..run.process import run_cellpose
from ..settings import CellposeSettings, DetectorCfg

log = logging.getLogger("cellpose_detector")

BASE_ERROR_MESSAGE = "CellposeDetector: "


class CellposeDetector:
    """Detects spots in a 2D (+ channel) (+ time) image by running cellpose.

    Each timepoint of `region` is saved to a temporary workspace, cellpose is
    run once over the whole folder, the masks it writes are read back and
    turned into spots by `extractor`, and the spots are moved back into the
    image's coordinates.

    Call `check_input()` then `process()`; on success `result` and
    `processing_time` are set, otherwise `error_message` is.
    """

    def __init__(
        self,
        image: Optional[CalibratedImage],
        region: Optional[Region],
        settings: CellposeSettings,
        progress: Optional[ProgressSink] = None,
        *,
        detector_cfg: Optional[DetectorCfg] = None,
        extractor: SpotExtractor = labels_to_spots,
    ):
        self.image = image
        self.region = region
        self.settings = settings
        self.progress = progress if progress is not None else VoidProgress()
        self.cfg = detector_cfg or DetectorCfg()
        self.extractor = extractor

        self.error_message: Optional[str] = None
        self.processing_time: float = 0.0
        self.result: Optional[SpotCollection] = None

    def check_input(self) -> bool:
        try:
            self._validate()
        except UnsupportedInputError as e:
            self.error_message = BASE_ERROR_MESSAGE + str(e)
            return False
        return True

    def _validate(self) -> None:
        if self.image is None:
            raise UnsupportedInputError("Image is null.")
        if self.image.has_axis("Z"):
            raise UnsupportedInputError("Image must be 2D over time, got an image with multiple Z.")

    def process(self) -> bool:
        start = time.perf_counter()
        self.result = None
        self.error_message = None
        self.processing_time = 0.0
        try:
            self._validate()
            spots = self._run()
        except DetectorError as e:
            self.error_message = BASE_ERROR_MESSAGE + str(e)
            log.error("%s", self.error_message)
            return False
        self.result = spots
        self.processing_time = time.perf_counter() - start
        log.info("Detected %d spots over %d frames in %.1fs", len(spots), len(spots.frames()), self.processing_time)
        return True

    def _run(self) -> SpotCollection:
        img = self.image
        region = self.region if self.region is not None else Region.full(img)

        # the region's first frame, needed to put spots back in the right frame
        has_time = img.has_axis("T")
        min_t = region.min(region.num_dimensions - 1) if has_time else 0
        frame_interval = img.frame_interval()
        calibration = img.spatial_calibration()

        with Workspace.acquire(self.cfg.workspace_prefix) as ws:
            self.progress.log("Saving single time-points.\n")
            # local frame indices start at 0 from here on
            frames = crop_frames(img, region)
            save_frames(frames, ws.path)

            run_cellpose(
                self.settings,
                ws.path,
                self.progress,
                log_file=self.cfg.log_file,
                poll_interval=self.cfg.poll_interval_s,
            )

            self.progress.log("Reading Cellpose masks.\n")
            stack = collect_masks(ws.path, len(frames), calibration, n_slices=1, name=img.name)

        self.progress.log("Converting masks to spots.\n")
        try:
            local = self.extractor(stack, self.settings.simplify_contours)
        except DetectorError:
            raise
        except Exception as e:
            raise ObjectExtractionError(str(e)) from e

        return SpotCollection.from_spots(reproject(local, region, calibration, min_t, frame_interval))
