import logging
import shlex
from pathlib import Path

import typer

from .core.types import CalibratedImage, Region
from .io.image_reader import load_image
from .pipeline.detector import CellposeDetector
from .progress import LoggingProgress
from .settings import RegionCfg, Settings

app = typer.Typer(add_completion=False)


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(filename)s:%(lineno)d | %(funcName)s() | %(message)s",
    )


def ensure_output_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def build_region(img: CalibratedImage, cfg: RegionCfg) -> Region:
    full = Region.full(img)
    mins, maxs = list(full.mins), list(full.maxs)
    axes = img.region_axes()
    for axis, rng in (("X", cfg.x), ("Y", cfg.y), ("T", cfg.t)):
        if rng is None or axis not in axes:
            continue
        d = axes.index(axis)
        mins[d], maxs[d] = int(rng[0]), int(rng[1])
    return Region(tuple(mins), tuple(maxs))


@app.command()
def run(
    config: Path = typer.Option(..., "--config", "-c", help="Path to config.yaml"),
):
    cfg = Settings.from_yaml(config)
    setup_logging(cfg.runtime.log_level)
    log = logging.getLogger("cellpose_detector")

    cal = cfg.acquisition.default_calibration
    img = load_image(cfg.data.image_path, cfg.data.series, {"X": cal.dx, "Y": cal.dy, "T": cal.dt})
    region = build_region(img, cfg.data.region)
    log.info("%s: axes %s shape %s | region %s -> %s", img.name, img.axes, img.data.shape, region.mins, region.maxs)

    detector = CellposeDetector(img, region, cfg.cellpose, LoggingProgress(log), detector_cfg=cfg.detector)
    if not detector.check_input() or not detector.process():
        log.error("%s", detector.error_message)
        raise typer.Exit(code=1)

    out_csv = cfg.data.output_csv or cfg.data.image_path.with_name(f"{cfg.data.image_path.stem}_spots.csv")
    ensure_output_dir(out_csv.parent)
    df = detector.result.to_dataframe()
    df.to_csv(out_csv, index=False)
    log.info("%s: found %d spots in %.1fs | saved -> %s", img.name, len(df), detector.processing_time, out_csv)


@app.command()
def check(
    config: Path = typer.Option(..., "--config", "-c", help="Path to config.yaml"),
):
    """Validate the config and print the cellpose command that would run."""
    cfg = Settings.from_yaml(config)
    typer.echo(shlex.join(cfg.cellpose.to_cmd_line("<workspace>")))


if __name__ == "__main__":
    app()
