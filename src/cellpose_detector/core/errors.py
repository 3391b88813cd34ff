from pathlib import Path
from typing import Optional


class DetectorError(Exception):
    """Base class for failures that end a detection run."""


class WorkspaceCreationError(DetectorError):
    pass


class UnsupportedInputError(DetectorError):
    pass


class FrameWriteError(DetectorError):
    pass


class ExternalProcessError(DetectorError):
    pass


class MissingResultError(DetectorError):
    def __init__(self, index: int, path: Optional[Path] = None):
        self.index = index
        self.path = path
        name = path.name if path is not None else str(index)
        super().__init__(f"Could not find results file for timepoint {index}: {name}")


class ObjectExtractionError(DetectorError):
    pass
