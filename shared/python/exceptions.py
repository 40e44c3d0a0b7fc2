"""
LST Downscaler — Custom Exception Hierarchy
============================================
Every module raises exceptions from this hierarchy so callers can catch
them at the right level of granularity.

Hierarchy::

    LSTDownscalerError                   ← catch-all base
    ├── InputValidationError             ← bad config, dates, ratios, grids
    │   └── ColumnNotFoundError          ← sample table column missing
    ├── CRSError                         ← invalid / unknown CRS string
    ├── RasterError                      ← xarray / numpy raster issues
    │   └── FeatureMismatchError         ← stack lacks a band the model needs
    ├── SourceDataError                  ← imagery archive query failed
    ├── InsufficientSamplesError         ← nothing to train on
    └── OutputWriteError                 ← cannot write to output path

Absence of imagery for a single day is *not* an exception: the inference
engine represents it as a ``NoDataStep``.  ``SourceDataError`` is only
fatal where a whole training period has no usable imagery.

Usage::

    from shared.python.exceptions import FeatureMismatchError

    raise FeatureMismatchError(["TPI"], available=["B4", "B8"])
"""

from __future__ import annotations

from typing import Sequence


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


class LSTDownscalerError(Exception):
    """Base exception for the LST downscaling toolkit.

    Args:
        message: Human-readable description of the error.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------


class InputValidationError(LSTDownscalerError):
    """Raised when configuration or inputs fail pre-processing validation."""


class ColumnNotFoundError(InputValidationError):
    """Raised when an expected column is absent from a sample table.

    Args:
        column: The name of the missing column.
        available: Column names that ARE present, used to build a helpful
                   error message.

    Example::

        raise ColumnNotFoundError("NDMI", samples.columns)
    """

    def __init__(self, column: str, available: Sequence[str]) -> None:
        available_str = ", ".join(f"'{c}'" for c in available)
        super().__init__(
            f"Column '{column}' not found. Available columns: {available_str}"
        )
        self.column: str = column
        self.available: list[str] = list(available)


# ---------------------------------------------------------------------------
# CRS
# ---------------------------------------------------------------------------


class CRSError(LSTDownscalerError):
    """Raised when a coordinate reference system cannot be parsed.

    Args:
        crs_string: The raw CRS string that caused the error.
    """

    def __init__(self, crs_string: str) -> None:
        super().__init__(
            f"Invalid or unrecognised CRS: '{crs_string}'. "
            "Use an EPSG code (e.g. 'EPSG:32636') or a valid WKT/PROJ string."
        )
        self.crs_string: str = crs_string


# ---------------------------------------------------------------------------
# Raster
# ---------------------------------------------------------------------------


class RasterError(LSTDownscalerError):
    """Raised for general raster processing failures."""


class FeatureMismatchError(RasterError):
    """Raised when a feature stack is missing bands a model was fitted on.

    This is a fatal configuration error: silently substituting a default
    band would corrupt every prediction that follows.

    Args:
        missing: Band names that were expected but not found.
        available: Band names actually present on the stack.
        context: Optional label for where the mismatch happened, such as
                 the date of the time unit being predicted.
    """

    def __init__(
        self,
        missing: Sequence[str],
        available: Sequence[str],
        context: str | None = None,
    ) -> None:
        where = f" ({context})" if context else ""
        super().__init__(
            f"Feature stack is missing band(s) {', '.join(missing)}{where}. "
            f"Available bands: {', '.join(available) or 'none'}"
        )
        self.missing: list[str] = list(missing)
        self.available: list[str] = list(available)
        self.context: str | None = context


# ---------------------------------------------------------------------------
# Source imagery
# ---------------------------------------------------------------------------


class SourceDataError(LSTDownscalerError):
    """Raised when imagery cannot be retrieved from the raster archive.

    Args:
        collection: STAC collection that was queried.
        reason: Underlying error message or explanation.
    """

    def __init__(self, collection: str, reason: str) -> None:
        super().__init__(f"Could not retrieve '{collection}' imagery: {reason}")
        self.collection: str = collection
        self.reason: str = reason


# ---------------------------------------------------------------------------
# Training
# ---------------------------------------------------------------------------


class InsufficientSamplesError(LSTDownscalerError):
    """Raised when a regression model cannot be fitted for lack of samples."""


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputWriteError(LSTDownscalerError):
    """Raised when an output file cannot be written.

    Args:
        output_path: String representation of the path that failed.
        reason: Underlying OS or library error message.
    """

    def __init__(self, output_path: str, reason: str) -> None:
        super().__init__(
            f"Failed to write output to '{output_path}': {reason}"
        )
        self.output_path: str = output_path
        self.reason: str = reason
