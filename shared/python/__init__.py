"""
LST Downscaler — Shared Python Package
=======================================
Re-exports the shared base class, exception hierarchy, and validator
utilities so tools can import from a single location::

    from shared.python import GeoTool, Validators
    from shared.python.exceptions import FeatureMismatchError
"""

from shared.python.base_tool import GeoTool
from shared.python.exceptions import (
    ColumnNotFoundError,
    CRSError,
    FeatureMismatchError,
    InputValidationError,
    InsufficientSamplesError,
    LSTDownscalerError,
    OutputWriteError,
    RasterError,
    SourceDataError,
)
from shared.python.validators import Validators

__all__ = [
    "GeoTool",
    "Validators",
    "LSTDownscalerError",
    "InputValidationError",
    "ColumnNotFoundError",
    "CRSError",
    "RasterError",
    "FeatureMismatchError",
    "SourceDataError",
    "InsufficientSamplesError",
    "OutputWriteError",
]
