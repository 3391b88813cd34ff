from __future__ import annotations
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# -----------------------------------
# Enums for clarity & typo protection
# -----------------------------------
class PretrainedModel(str, Enum):
    cyto = "cyto"
    cyto2 = "cyto2"
    cyto3 = "cyto3"
    nuclei = "nuclei"
    custom = "custom"


# ---------------------
# Cellpose run settings
# ---------------------
class CellposeSettings(BaseModel):
    """Everything needed to build the cellpose command line for one run."""

    model_config = ConfigDict(frozen=True)

    python_path: str = "python"
    # replaces `<python_path> -m cellpose` when set, e.g. a wrapper script
    launcher: Optional[List[str]] = None

    pretrained_model: PretrainedModel = PretrainedModel.cyto3
    custom_model_path: Optional[Path] = None

    channel: int = Field(0, ge=0, le=3)  # 0 = gray, 1 = red, 2 = green, 3 = blue
    channel2: int = Field(0, ge=0, le=3)  # optional nuclear channel
    diameter: float = Field(30.0, ge=0)  # 0 lets cellpose estimate it
    flow_threshold: float = 0.4
    cellprob_threshold: float = Field(0.0, ge=-6, le=6)
    use_gpu: bool = True

    simplify_contours: bool = True
    extra_args: List[str] = []

    @field_validator("launcher")
    @classmethod
    def launcher_not_empty(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is not None and not v:
            raise ValueError("launcher must name at least one program")
        return v

    @model_validator(mode="after")
    def custom_model_needs_path(self) -> "CellposeSettings":
        if self.pretrained_model == PretrainedModel.custom and self.custom_model_path is None:
            raise ValueError("custom_model_path is required when pretrained_model is 'custom'")
        return self

    def model_arg(self) -> str:
        if self.pretrained_model == PretrainedModel.custom:
            return str(self.custom_model_path)
        return self.pretrained_model.value

    def to_cmd_line(self, data_dir: str | Path) -> List[str]:
        cmd = list(self.launcher) if self.launcher else [self.python_path, "-m", "cellpose"]
        cmd += ["--dir", str(data_dir)]
        cmd += ["--pretrained_model", self.model_arg()]
        cmd += ["--chan", str(self.channel), "--chan2", str(self.channel2)]
        cmd += ["--diameter", f"{self.diameter:g}"]
        cmd += ["--flow_threshold", f"{self.flow_threshold:g}"]
        cmd += ["--cellprob_threshold", f"{self.cellprob_threshold:g}"]
        if self.use_gpu:
            cmd.append("--use_gpu")
        cmd += ["--verbose", "--no_npy", "--save_png"]
        cmd += [str(a) for a in self.extra_args]
        return cmd


class DetectorCfg(BaseModel):
    model_config = ConfigDict(frozen=True)

    # cellpose appends its progress here; shared by every run on the host
    log_file: Path = Path.home() / ".cellpose" / "run.log"
    poll_interval_s: float = Field(0.2, gt=0)
    workspace_prefix: str = "Cellpose_"


# ---------------------
# Input data settings
# ---------------------
class Calibration(BaseModel):
    dx: float = Field(1.0, gt=0)
    dy: float = Field(1.0, gt=0)
    dt: float = Field(1.0, gt=0)


class RegionCfg(BaseModel):
    x: Optional[Tuple[int, int]] = None
    y: Optional[Tuple[int, int]] = None
    t: Optional[Tuple[int, int]] = None


class DataCfg(BaseModel):
    image_path: Path
    series: int = 0  # LIF series index, ignored for TIFF
    output_csv: Optional[Path] = None
    region: RegionCfg = RegionCfg()

    @field_validator("image_path")
    @classmethod
    def image_exists(cls, v: Path) -> Path:
        if not v.exists():
            raise ValueError(f"Image file not found: {v}")
        return v


class AcquisitionCfg(BaseModel):
    # used where the file carries no calibration
    default_calibration: Calibration = Calibration()


# ---------------------
# Runtime settings
# ---------------------
class RuntimeCfg(BaseModel):
    log_level: str = "INFO"


# ---------------------
# Root settings object
# ---------------------
class Settings(BaseModel):
    data: DataCfg
    acquisition: AcquisitionCfg = AcquisitionCfg()
    cellpose: CellposeSettings = CellposeSettings()
    detector: DetectorCfg = DetectorCfg()
    runtime: RuntimeCfg = RuntimeCfg()

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls(**data)
