"""
export.py
=========
Save run outputs to disk.

Supported outputs
-----------------
GeoTIFF  -- one ``LST_YYYYMMDD.tif`` per Valid step (float32, LZW,
            nodata -9999)
CSV      -- ``series_qa.csv`` (every step, including no-data days) and
            ``feature_ranking.csv``
joblib   -- ``lst_model.joblib`` (fitted model + feature order)
JSON     -- ``run_summary.json`` (configuration and accuracy metrics)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd
import rasterio
from rasterio.crs import CRS

from shared.python.exceptions import OutputWriteError
from shared.python.validators import Validators

from .selection import FeatureRanking
from .series import PredictionSeries, ValidStep
from .training import RegressionModel

logger = logging.getLogger("lst_downscaler.export")

NODATA = -9999.0


class SeriesWriter:
    """Write the prediction series and training artefacts to a directory.

    Parameters
    ----------
    output_dir:
        Root directory for all saved files.  Created if it does not exist.
    prefix:
        Filename prefix of the per-day GeoTIFFs.
    """

    def __init__(self, output_dir: Path, prefix: str = "LST") -> None:
        self.out_dir = Path(output_dir)
        self.prefix = prefix
        Validators.assert_output_dir_writable(self.out_dir)

    # ------------------------------------------------------------------
    # Convenience: save everything
    # ------------------------------------------------------------------

    def write_all(
        self,
        series: PredictionSeries,
        ranking: Optional[FeatureRanking] = None,
        model: Optional[RegressionModel] = None,
        summary: Optional[dict] = None,
    ) -> Dict[str, Path]:
        """Save every available output; return ``{label: path}``."""
        paths: Dict[str, Path] = {}
        for step in series.iter_valid():
            paths[f"raster_{step.timestamp.isoformat()}"] = self.write_geotiff(step)
        paths["qa"] = self.write_qa_csv(series)
        if ranking is not None:
            paths["ranking"] = self.write_ranking_csv(ranking)
        if model is not None:
            paths["model"] = model.save(self.out_dir / "lst_model.joblib")
        if summary is not None:
            paths["summary"] = self.write_summary(summary)
        logger.info("Wrote %d file(s) to %s", len(paths), self.out_dir.resolve())
        return paths

    # ------------------------------------------------------------------
    # Rasters (GeoTIFF)
    # ------------------------------------------------------------------

    def write_geotiff(self, step: ValidStep) -> Path:
        """Write one Valid step as a single-band float32 GeoTIFF.

        Raises:
            CRSError: If the field CRS cannot be parsed.
            OutputWriteError: If the file cannot be written.
        """
        path = self.out_dir / f"{self.prefix}_{step.timestamp.strftime('%Y%m%d')}.tif"
        field = step.field
        Validators.assert_crs_valid(field.crs)
        band = field.band_names[0]
        arr = field.band(band)
        out = np.where(np.isnan(arr), NODATA, arr).astype(np.float32)

        try:
            with rasterio.open(
                path,
                "w",
                driver="GTiff",
                height=out.shape[0],
                width=out.shape[1],
                count=1,
                dtype="float32",
                crs=CRS.from_user_input(field.crs),
                transform=field.transform,
                nodata=NODATA,
                compress="lzw",
            ) as dst:
                dst.write(out, 1)
                dst.set_band_description(1, band)
                dst.update_tags(
                    date=step.timestamp.isoformat(),
                    source_image_count=str(step.source_image_count),
                    units="degC",
                )
        except (OSError, rasterio.errors.RasterioIOError) as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        logger.debug("Saved raster: %s", path.name)
        return path

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def _write_frame(self, frame: pd.DataFrame, name: str) -> Path:
        path = self.out_dir / name
        try:
            frame.to_csv(path, index=False)
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        return path

    def write_qa_csv(self, series: PredictionSeries) -> Path:
        """Per-step QA table, no-data days included."""
        return self._write_frame(series.summary_frame(), "series_qa.csv")

    def write_ranking_csv(self, ranking: FeatureRanking) -> Path:
        frame = pd.DataFrame(
            ranking.to_records(), columns=["rank", "feature", "r", "r2", "excluded"]
        )
        return self._write_frame(frame, "feature_ranking.csv")

    def write_summary(self, summary: dict) -> Path:
        path = self.out_dir / "run_summary.json"
        try:
            with open(path, "w", encoding="utf-8") as fh:
                json.dump(summary, fh, indent=2, default=str)
        except OSError as exc:
            raise OutputWriteError(str(path), str(exc)) from exc
        return path
