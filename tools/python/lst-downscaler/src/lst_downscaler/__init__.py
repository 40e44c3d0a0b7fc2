"""
lst_downscaler
==============
Daily fine-resolution land-surface temperature from a coarse Landsat
label, Sentinel-2 reflectance and terrain predictors.

Pulls imagery from Microsoft Planetary Computer, trains a random forest
on a stratified sample of the training-period composite, then applies
it to every requested day independently.

Submodules
----------
raster     -- Immutable (band, y, x) raster container
aoi        -- Resolve the region and its UTM zone
config     -- Explicit run parameters
fetcher    -- Query and stack imagery from Planetary Computer
masking    -- Sentinel-2 / Landsat cloud masks and scaling
terrain    -- Elevation, slope, TPI and elevation strata
features   -- Feature stack shared by training and inference
sampling   -- Stratified point sample
selection  -- Correlation ranking and top-K selection
training   -- Train/test split and random forest regressor
inference  -- Per-day Valid / NoData prediction
series     -- Time steps and the ordered prediction series
pipeline   -- DownscalingPipeline tool
export     -- GeoTIFF, CSV, model and summary outputs
viz        -- Time-series chart and GIF animation
"""

from .config import DownscalingConfig
from .features import FEATURE_BANDS, build_feature_stack
from .fetcher import ImagerySource, PlanetaryComputerSource, SourceImage
from .inference import InferenceEngine, TimeUnit, daily_units
from .pipeline import DownscalingPipeline
from .raster import RasterField
from .sampling import Sample, SampleSet, stratified_sample
from .selection import FeatureRanking, FeatureScore, rank_features, select_features
from .series import NoDataStep, PredictionSeries, ValidStep
from .terrain import TerrainLayers
from .training import RegressionModel, TrainingResult, train_model

__version__ = "1.0.0"
__all__ = [
    "DownscalingConfig",
    "DownscalingPipeline",
    "FEATURE_BANDS",
    "FeatureRanking",
    "FeatureScore",
    "ImagerySource",
    "InferenceEngine",
    "NoDataStep",
    "PlanetaryComputerSource",
    "PredictionSeries",
    "RasterField",
    "RegressionModel",
    "Sample",
    "SampleSet",
    "SourceImage",
    "TerrainLayers",
    "TimeUnit",
    "TrainingResult",
    "ValidStep",
    "build_feature_stack",
    "daily_units",
    "rank_features",
    "select_features",
    "stratified_sample",
    "train_model",
]
