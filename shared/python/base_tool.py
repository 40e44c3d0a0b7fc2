"""
LST Downscaler — Shared Base Tool
==================================
Abstract base class for the runnable tools in this repository.

Design Pattern:
    Template Method — the public ``run()`` method defines a fixed
    pipeline (validate → process → report) that subclasses fill in by
    implementing ``validate_inputs`` and ``process``.

Usage::

    from shared.python.base_tool import GeoTool

    class DownscalingPipeline(GeoTool):
        def validate_inputs(self) -> None:
            self.config.validate()
        def process(self) -> None:
            ...
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from pathlib import Path

# Root logger of the package hierarchy; modules log through children such
# as ``lst_downscaler.sampling``.
logger = logging.getLogger("lst_downscaler")


class GeoTool(ABC):
    """Abstract base class for runnable geospatial tools.

    Attributes:
        output_dir: Directory where the tool writes its products, or
            ``None`` when results are only kept in memory.
        verbose: When ``True`` DEBUG-level messages are logged in addition
            to INFO/WARNING/ERROR.
    """

    def __init__(
        self,
        output_dir: Path | None = None,
        *,
        verbose: bool = False,
    ) -> None:
        self.output_dir: Path | None = Path(output_dir) if output_dir is not None else None
        self.verbose: bool = verbose

        self._configure_logging()

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def validate_inputs(self) -> None:
        """Validate all inputs before processing begins.

        Raises:
            InputValidationError: If any precondition is not satisfied.
        """

    @abstractmethod
    def process(self) -> None:
        """Execute the core processing logic.

        Called by :meth:`run` after :meth:`validate_inputs` has succeeded.
        Exceptions propagate through :meth:`run` unchanged.
        """

    # ------------------------------------------------------------------
    # Template method
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Validate, process, then log elapsed time.

        Raises:
            Any exception raised by ``validate_inputs`` or ``process``.
        """
        logger.info("Starting %s", self.__class__.__name__)
        start = time.perf_counter()

        self.validate_inputs()
        self.process()

        self._report_success(time.perf_counter() - start)

    # ------------------------------------------------------------------
    # Protected helpers
    # ------------------------------------------------------------------

    def _report_success(self, elapsed: float) -> None:
        if self.output_dir is None:
            logger.info("%s completed in %.2fs", self.__class__.__name__, elapsed)
        else:
            logger.info(
                "%s completed in %.2fs → %s",
                self.__class__.__name__,
                elapsed,
                self.output_dir,
            )

    def _configure_logging(self) -> None:
        """Attach one console handler to the package logger.

        Uses DEBUG level when ``self.verbose`` is ``True``, otherwise INFO.
        """
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                fmt="[%(asctime)s] %(levelname)-8s %(name)s — %(message)s",
                datefmt="%H:%M:%S",
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(output_dir={self.output_dir!r})"
