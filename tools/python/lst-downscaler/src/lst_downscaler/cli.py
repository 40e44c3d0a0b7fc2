"""
LST Downscaler — CLI Entry Point
=================================
Installed as the ``lst-downscale`` command via ``pyproject.toml``.

Usage:
    lst-downscale --bbox 34.9 31.0 35.1 31.2 --start 2023-07-01 --end 2023-07-11 --output out/
    lst-downscale --config run.json --workers 4 --gif
    lst-downscale --config run.json --predictors B4,B8,NDMI,elevation -k 2
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import click

from shared.python.exceptions import InputValidationError, LSTDownscalerError

from .config import DownscalingConfig
from .pipeline import DownscalingPipeline


def _build_config(
    config_path: Optional[Path],
    bbox: Optional[tuple],
    start: Optional[str],
    end: Optional[str],
    overrides: dict,
) -> DownscalingConfig:
    """Merge the JSON file (if any) with command-line values; the CLI wins."""
    base = {"bbox": bbox, "start": start, "end": end, **overrides}
    if config_path is not None:
        return DownscalingConfig.from_json(config_path, **base)

    missing = [opt for opt, val in (("--bbox", bbox), ("--start", start), ("--end", end)) if val is None]
    if missing:
        raise InputValidationError(
            f"Missing {', '.join(missing)} (or pass --config with those keys)."
        )
    return DownscalingConfig(**{k: v for k, v in base.items() if v is not None})


@click.command(
    name="lst-downscale",
    help="Downscale Landsat land-surface temperature to a daily 10 m series "
         "using Sentinel-2 and terrain predictors.",
)
@click.option(
    "--bbox",
    nargs=4,
    type=float,
    default=None,
    metavar="W S E N",
    help="WGS84 bounding box: min_lon min_lat max_lon max_lat.",
)
@click.option("--start", default=None, help="First day (ISO date, inclusive).")
@click.option("--end", default=None, help="Last day (ISO date, exclusive).")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON file with run parameters; command-line options override it.",
)
@click.option(
    "--predictors",
    default="",
    help="Comma-separated candidate predictors. Omit to use the default list.",
)
@click.option("-k", "--final-predictors", type=int, default=None, help="Number of predictors kept (K).")
@click.option("--num-points", type=int, default=None, help="Total stratified sample size.")
@click.option(
    "--allocation",
    type=click.Choice(["balanced", "proportional"]),
    default=None,
    help="Split of sample points across elevation strata (default: balanced).",
)
@click.option("--train-ratio", type=float, default=None, help="Expected Train share r in (0, 1).")
@click.option("--trees", "n_trees", type=int, default=None, help="Random forest size.")
@click.option("--seed", type=int, default=None, help="Seed for sampling, split and fit.")
@click.option("--workers", "max_workers", type=int, default=None, help="Days predicted concurrently.")
@click.option(
    "--output", "-o", "output_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for GeoTIFFs, QA tables, model and chart.",
)
@click.option("--gif/--no-gif", default=False, show_default=True, help="Render an animated GIF.")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def main(
    bbox: Optional[tuple],
    start: Optional[str],
    end: Optional[str],
    config_path: Optional[Path],
    predictors: str,
    final_predictors: Optional[int],
    num_points: Optional[int],
    allocation: Optional[str],
    train_ratio: Optional[float],
    n_trees: Optional[int],
    seed: Optional[int],
    max_workers: Optional[int],
    output_dir: Optional[Path],
    gif: bool,
    verbose: bool,
) -> None:
    """CLI entry point — wires Click options into DownscalingPipeline."""
    bbox = tuple(bbox) if bbox else None
    candidate_list = [p.strip() for p in predictors.split(",") if p.strip()] or None
    overrides = {
        "candidate_predictors": candidate_list,
        "final_predictors": final_predictors,
        "num_points": num_points,
        "allocation": allocation,
        "train_ratio": train_ratio,
        "n_trees": n_trees,
        "seed": seed,
        "max_workers": max_workers,
    }

    try:
        config = _build_config(config_path, bbox, start, end, overrides)
        tool = DownscalingPipeline(config, output_dir, write_gif=gif, verbose=verbose)
        tool.run()
    except LSTDownscalerError as exc:
        click.echo(f"Error: {exc.message}", err=True)
        sys.exit(1)

    series = tool.series
    click.echo(f"\nSelected predictors: {', '.join(tool.selected_features)}")
    click.echo(
        f"Test RMSE: {tool.metrics['rmse']:.3f} °C  R²: {tool.metrics['r2']:.3f}"
    )
    click.echo(f"Days: {len(series)} requested, {len(series.valid())} valid")
    for step in series:
        flag = "valid" if step.is_valid else "no data"
        click.echo(f"  {step.timestamp.isoformat()}  {flag:<8} images={step.source_image_count}")
    if output_dir is not None:
        click.echo(f"\nOutputs written to: {output_dir}")


if __name__ == "__main__":
    main()
