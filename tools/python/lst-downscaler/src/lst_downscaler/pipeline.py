"""
LST Downscaler — Pipeline
==========================
Wires the stages into one runnable tool.

Classes:
    DownscalingPipeline   Primary tool class (inherits GeoTool).

Stages::

    training period  S2 (masked, median) ─┐
                     DEM → terrain ───────┼─ build_feature_stack ─┐
                     Landsat LST (mean) ──┼───────────────────────┼─ stratified_sample
                     elevation strata ────┘                       │
    rank_features → select_features → train_model → evaluate(Test)
    daily_units → InferenceEngine.run → PredictionSeries.assemble → sinks

Usage::

    from lst_downscaler import DownscalingConfig, DownscalingPipeline

    config = DownscalingConfig(bbox=(35.0, 31.0, 35.1, 31.1), start="2023-07-01", end="2023-07-11")
    tool = DownscalingPipeline(config, output_dir=Path("output"))
    tool.run()

    for step in tool.series.iter_valid():
        print(step.timestamp, step.source_image_count)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import matplotlib.pyplot as plt

from shared.python.base_tool import GeoTool
from shared.python.exceptions import InsufficientSamplesError, SourceDataError
from shared.python.validators import Validators

from .aoi import AOIBuilder
from .config import DownscalingConfig
from .export import SeriesWriter
from .features import build_feature_stack, mean_composite, median_composite
from .fetcher import ImagerySource, PlanetaryComputerSource
from .inference import InferenceEngine, daily_units
from .masking import mask_landsat_lst, mask_sentinel2
from .raster import RasterField
from .sampling import SampleSet, stratified_sample
from .selection import FeatureRanking, rank_features, select_features
from .series import PredictionSeries
from .terrain import TerrainLayers
from .training import TrainingResult, train_model
from .viz import timeseries_chart, write_animation

logger = logging.getLogger("lst_downscaler.pipeline")


class DownscalingPipeline(GeoTool):
    """Train on a coarse LST label and predict a daily fine-resolution series.

    Inherits the Template Method pipeline from :class:`~shared.python.GeoTool`.

    Args:
        config: Run parameters.
        output_dir: Where products are written; ``None`` keeps results in
            memory only.
        optical_source: Sentinel-2 source.  Defaults to Planetary Computer.
        thermal_source: Landsat source.  Defaults to Planetary Computer.
        elevation: Single-band elevation field defining the analysis grid.
            Fetched from the Copernicus DEM when omitted.
        write_gif: Also render an animated GIF of the valid days.
        verbose: Enable DEBUG-level logging.
    """

    def __init__(
        self,
        config: DownscalingConfig,
        output_dir: Optional[Path] = None,
        *,
        optical_source: Optional[ImagerySource] = None,
        thermal_source: Optional[ImagerySource] = None,
        elevation: Optional[RasterField] = None,
        write_gif: bool = False,
        verbose: bool = False,
    ) -> None:
        super().__init__(output_dir, verbose=verbose)
        self.config = config
        self.optical_source = optical_source
        self.thermal_source = thermal_source
        self.elevation = elevation
        self.write_gif = write_gif

        self._terrain: Optional[TerrainLayers] = None
        self._samples: Optional[SampleSet] = None
        self._ranking: Optional[FeatureRanking] = None
        self._selected: list[str] = []
        self._training: Optional[TrainingResult] = None
        self._metrics: dict = {}
        self._series: Optional[PredictionSeries] = None
        self._engine: Optional[InferenceEngine] = None

    # ------------------------------------------------------------------
    # GeoTool abstract method implementations
    # ------------------------------------------------------------------

    def validate_inputs(self) -> None:
        """Validate the configuration and the output directory.

        Raises:
            InputValidationError: If any parameter is invalid.
            OutputWriteError: If the output directory cannot be created.
        """
        self.config.validate()
        if self.output_dir is not None:
            Validators.assert_output_dir_writable(self.output_dir)
        logger.debug("Inputs validated.")

    def process(self) -> None:
        """Run training, daily inference, assembly and (optionally) export.

        Raises:
            SourceDataError: If the training period has no usable imagery.
            InsufficientSamplesError: If no training sample can be drawn.
            FeatureMismatchError: If an inference stack lacks a model band.
        """
        cfg = self.config
        self._resolve_sources()

        terrain = self._build_terrain()
        stack, label = self._training_layers(terrain)

        strata = terrain.strata(cfg.elevation_breaks)
        samples = stratified_sample(
            stack, label, strata, cfg.num_points, cfg.seed, cfg.sample_scale, allocation=cfg.allocation
        )
        if len(samples) == 0:
            raise InsufficientSamplesError(
                "No pixel has valid features, label and stratum over the training period."
            )
        self._samples = samples

        self._ranking = rank_features(samples, cfg.candidate_predictors)
        self._selected = select_features(
            self._ranking,
            cfg.final_predictors,
            samples=samples,
            prune_redundant=cfg.prune_redundant,
            redundancy_threshold=cfg.redundancy_threshold,
        )

        self._training = train_model(
            samples, self._selected, cfg.train_ratio, cfg.n_trees, cfg.seed
        )
        self._metrics = self._training.model.evaluate(self._training.test)
        logger.info(
            "Test accuracy: n=%d RMSE=%.3f MAE=%.3f R²=%.3f",
            self._metrics["n"], self._metrics["rmse"], self._metrics["mae"], self._metrics["r2"],
        )

        units = daily_units(cfg.start, cfg.end)
        self._engine = InferenceEngine(
            self.optical_source,
            self._training.model,
            terrain,
            cfg.bbox,
            cloud_cover=cfg.daily_cloud_cover,
            band_name=cfg.output_band,
            mask_fn=mask_sentinel2,
        )
        steps = self._engine.run(units, max_workers=cfg.max_workers)
        self._series = PredictionSeries.assemble(steps, units)

        if self.output_dir is not None:
            self._export()

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _resolve_sources(self) -> None:
        if self.optical_source is not None and self.thermal_source is not None:
            return
        aoi = AOIBuilder.from_bbox(*self.config.bbox)
        logger.info("Region %r", aoi)
        if self.optical_source is None:
            self.optical_source = PlanetaryComputerSource.sentinel2(aoi.epsg, self.config.resolution)
        if self.thermal_source is None:
            self.thermal_source = PlanetaryComputerSource.landsat(aoi.epsg, self.config.resolution)

    def _build_terrain(self) -> TerrainLayers:
        if self.elevation is None:
            fetch_dem = getattr(self.optical_source, "fetch_dem", None)
            if fetch_dem is None:
                raise SourceDataError("cop-dem-glo-30", "no elevation given and the source has no DEM")
            self.elevation = fetch_dem(self.config.bbox)
        self._terrain = TerrainLayers.from_elevation(self.elevation.compute(), self.config.tpi_radius)
        return self._terrain

    def _training_layers(self, terrain: TerrainLayers) -> tuple[RasterField, RasterField]:
        """Feature stack and label over the training period."""
        cfg = self.config
        grid = terrain.field

        optical = self.optical_source.fetch(cfg.bbox, cfg.start, cfg.end, cfg.training_cloud_cover)
        if not optical:
            raise SourceDataError("sentinel-2-l2a", f"no imagery between {cfg.start} and {cfg.end}")
        thermal = self.thermal_source.fetch(cfg.bbox, cfg.start, cfg.end, cfg.training_cloud_cover)
        if not thermal:
            raise SourceDataError("landsat-c2-l2", f"no imagery between {cfg.start} and {cfg.end}")
        logger.info("Training period: %d optical, %d thermal image(s)", len(optical), len(thermal))

        reflectance = median_composite([grid.on_grid(mask_sentinel2(img.data), img.item_id) for img in optical])
        stack = build_feature_stack(reflectance, terrain).compute()

        label = mean_composite([grid.on_grid(mask_landsat_lst(img.data), img.item_id) for img in thermal])
        label = label.like(label.data.assign_coords(band=[cfg.label])).compute()
        return stack, label

    def _export(self) -> None:
        writer = SeriesWriter(self.output_dir, prefix=self.config.output_band)
        summary = {
            "config": self.config.to_dict(),
            "selected_features": self._selected,
            "test_metrics": self._metrics,
            "n_samples": len(self._samples) if self._samples is not None else 0,
            "valid_days": len(self._series.valid()),
            "total_days": len(self._series),
        }
        writer.write_all(self._series, self._ranking, self._training.model, summary)

        if len(self._series.valid()) == 0:
            logger.warning("No valid day to chart or animate.")
            return
        fig = timeseries_chart(self._series, self.output_dir / "lst_timeseries.png")
        plt.close(fig)
        if self.write_gif:
            write_animation(self._series, self.output_dir / "lst_animation.gif")

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def terrain(self) -> Optional[TerrainLayers]:
        return self._terrain

    @property
    def samples(self) -> Optional[SampleSet]:
        return self._samples

    @property
    def ranking(self) -> Optional[FeatureRanking]:
        return self._ranking

    @property
    def selected_features(self) -> list[str]:
        return list(self._selected)

    @property
    def training(self) -> Optional[TrainingResult]:
        return self._training

    @property
    def metrics(self) -> dict:
        """Accuracy on the Test partition: ``n``, ``rmse``, ``mae``, ``r2``."""
        return dict(self._metrics)

    @property
    def series(self) -> Optional[PredictionSeries]:
        return self._series

    @property
    def engine(self) -> Optional[InferenceEngine]:
        return self._engine
