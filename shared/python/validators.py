"""
LST Downscaler — Shared Input Validators
=========================================
Static precondition checks used by the configuration layer and by the
pipeline stages before any heavy computation begins.

All methods raise an exception from :mod:`shared.python.exceptions`
rather than returning booleans, so ``validate()`` implementations stay
short and readable::

    Validators.assert_date_range(config.start, config.end)
    Validators.assert_open_unit_interval(config.train_ratio, "train_ratio")
"""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Sequence

from shared.python.exceptions import (
    ColumnNotFoundError,
    CRSError,
    InputValidationError,
    OutputWriteError,
)


class Validators:
    """Collection of static precondition checks.

    All methods are ``@staticmethod`` — this class is never instantiated.
    """

    # ------------------------------------------------------------------
    # File-system checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_file_exists(path: Path) -> None:
        """Assert that *path* points to an existing regular file.

        Raises:
            InputValidationError: If *path* does not exist or is a directory.
        """
        path = Path(path)
        if not path.exists():
            raise InputValidationError(
                f"Input file not found: '{path}'. "
                "Check that the path is correct and the file exists."
            )
        if path.is_dir():
            raise InputValidationError(
                f"Expected a file but got a directory: '{path}'."
            )

    @staticmethod
    def assert_supported_extension(path: Path, extensions: Sequence[str]) -> None:
        """Assert that *path* has one of the allowed file extensions."""
        path = Path(path)
        suffix = path.suffix.lower()
        allowed = [ext.lower() for ext in extensions]
        if suffix not in allowed:
            raise InputValidationError(
                f"Unsupported file extension '{suffix}' for '{path.name}'. "
                f"Accepted extensions: {', '.join(allowed)}"
            )

    @staticmethod
    def assert_output_dir_writable(output_dir: Path) -> None:
        """Create *output_dir* (and parents) if needed.

        Raises:
            OutputWriteError: If the directory cannot be created.
        """
        output_dir = Path(output_dir)
        try:
            output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise OutputWriteError(str(output_dir), str(exc)) from exc

    # ------------------------------------------------------------------
    # Scalar parameter checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_date_range(start: date, end: date) -> None:
        """Assert that ``start < end`` (the end date is exclusive).

        Raises:
            InputValidationError: If the range is empty or inverted.
        """
        if end <= start:
            raise InputValidationError(
                f"Date range is empty: start={start.isoformat()} must be "
                f"before end={end.isoformat()} (end is exclusive)."
            )

    @staticmethod
    def assert_open_unit_interval(value: float, name: str) -> None:
        """Assert ``0 < value < 1``.

        Example::

            Validators.assert_open_unit_interval(0.7, "train_ratio")
        """
        if not 0.0 < float(value) < 1.0:
            raise InputValidationError(
                f"'{name}' must lie strictly between 0 and 1, got {value!r}."
            )

    @staticmethod
    def assert_positive_int(value: int, name: str) -> None:
        """Assert that *value* is an integer >= 1."""
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InputValidationError(
                f"'{name}' must be a positive integer, got {value!r}."
            )

    @staticmethod
    def assert_bbox_valid(bbox: Sequence[float]) -> None:
        """Assert a WGS84 ``(min_lon, min_lat, max_lon, max_lat)`` box.

        Raises:
            InputValidationError: On wrong length, inverted corners, or
                coordinates outside the valid lon/lat range.
        """
        if len(bbox) != 4:
            raise InputValidationError(
                f"Bounding box needs 4 values (min_lon, min_lat, max_lon, max_lat), "
                f"got {len(bbox)}."
            )
        min_lon, min_lat, max_lon, max_lat = (float(v) for v in bbox)
        if not (-180.0 <= min_lon < max_lon <= 180.0):
            raise InputValidationError(
                f"Invalid longitude span in bounding box: {min_lon} .. {max_lon}."
            )
        if not (-90.0 <= min_lat < max_lat <= 90.0):
            raise InputValidationError(
                f"Invalid latitude span in bounding box: {min_lat} .. {max_lat}."
            )

    # ------------------------------------------------------------------
    # CRS / projection checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_crs_valid(crs_string: str) -> None:
        """Assert that *crs_string* can be parsed by :mod:`pyproj`.

        Raises:
            CRSError: If *crs_string* is not recognised.
        """
        try:
            from pyproj import CRS  # noqa: PLC0415

            CRS.from_user_input(crs_string)
        except Exception as exc:
            raise CRSError(crs_string) from exc

    # ------------------------------------------------------------------
    # Tabular data checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_columns_exist(
        df: object,  # pandas DataFrame
        required_columns: Sequence[str],
    ) -> None:
        """Assert that all *required_columns* are present in *df*.

        Raises:
            ColumnNotFoundError: On the first missing column found.
        """
        available = list(df.columns)  # type: ignore[attr-defined]
        for col in required_columns:
            if col not in available:
                raise ColumnNotFoundError(col, available)

    # ------------------------------------------------------------------
    # Raster checks
    # ------------------------------------------------------------------

    @staticmethod
    def assert_raster_shapes_match(
        shape_a: tuple[int, ...],
        shape_b: tuple[int, ...],
        label_a: str = "Raster A",
        label_b: str = "Raster B",
    ) -> None:
        """Assert that two rasters share the same ``(rows, cols)`` grid.

        Only the trailing two dimensions are compared so band-stacked
        arrays can be checked against single-band ones.

        Raises:
            InputValidationError: If the grids differ.
        """
        if tuple(shape_a[-2:]) != tuple(shape_b[-2:]):
            raise InputValidationError(
                f"Raster grid mismatch: {label_a} is {tuple(shape_a[-2:])} but "
                f"{label_b} is {tuple(shape_b[-2:])}. "
                "All layers must be on the same pixel grid."
            )
