# src/bucket_ferry/controller.py
"""
Adaptive intra-page concurrency.

The engine synchronizes at the end of every page, which makes the page
boundary a natural point to re-tune how many objects are copied at once.
`ConcurrencyController` applies an AIMD-like strategy to the outcomes of the
page that just finished and exposes the limit to use for the next one.
"""

import logging
from typing import TYPE_CHECKING, List, Optional

import numpy as np

from bucket_ferry.config import AppConfig

if TYPE_CHECKING:
    from bucket_ferry.engine import ObjectOutcome

logger: logging.Logger = logging.getLogger(__name__)


class ConcurrencyController:
    """
    Adjusts the per-page concurrency limit from observed object outcomes.

    When disabled, the limit is pinned to `max_concurrency`. When enabled, it
    starts at `min_concurrency`, grows while pages complete cleanly and
    shrinks multiplicatively on a high error rate or a latency spike.
    """

    def __init__(self, app_config: AppConfig) -> None:
        """
        Initialize the concurrency controller.

        Args:
            app_config (AppConfig): The application configuration.
        """
        self._config: AppConfig = app_config
        self._limit: int = (
            app_config.min_concurrency
            if app_config.controller_enabled
            else app_config.max_concurrency
        )
        self._slow_start_threshold: Optional[int] = None
        self._smoothed_latency_s: Optional[float] = None
        self._smoothing_factor: float = 0.25
        self._pages_observed: int = 0

    @property
    def limit(self) -> int:
        """
        Get the concurrency limit for the next page.

        Returns:
            int: The current limit value.
        """
        return self._limit

    def observe(self, outcomes: List["ObjectOutcome"]) -> int:
        """
        Feeds one page of outcomes to the controller.

        Skipped objects carry no transfer latency and are ignored.

        Args:
            outcomes (List[ObjectOutcome]): Every outcome of the finished page.

        Returns:
            int: The limit to use for the next page.
        """
        if not self._config.controller_enabled:
            return self._limit

        attempted: List["ObjectOutcome"] = [o for o in outcomes if not o.skipped]
        if not attempted:
            logger.debug("Controller: nothing transferred this page, holding steady.")
            return self._limit

        self._pages_observed += 1
        failures: int = sum(1 for o in attempted if o.failed)
        error_rate: float = failures / len(attempted)
        durations: List[float] = [o.duration_s for o in attempted if not o.failed]

        median_s: float = float(np.median(durations)) if durations else 0.0
        p90_s: float = float(np.percentile(durations, 90)) if durations else 0.0

        if median_s > 0:
            if self._smoothed_latency_s is None:
                self._smoothed_latency_s = median_s
            else:
                self._smoothed_latency_s = (
                    self._smoothing_factor * median_s
                    + (1 - self._smoothing_factor) * self._smoothed_latency_s
                )

        logger.debug(
            f"Controller state: limit={self._limit}, "
            f"error_rate={error_rate:.2%}, p90={p90_s * 1000:.0f}ms, "
            f"smoothed={(self._smoothed_latency_s or 0) * 1000:.0f}ms, "
            f"ssthresh={self._slow_start_threshold}"
        )

        high_error_rate: bool = error_rate > self._config.controller_error_rate_threshold
        latency_spike: bool = (
            self._pages_observed > self._config.controller_warmup_pages
            and self._smoothed_latency_s is not None
            and p90_s > self._config.controller_latency_spike_factor * self._smoothed_latency_s
        )

        current: int = self._limit
        new_limit: int
        if high_error_rate or latency_spike:
            reason: str = "error rate" if high_error_rate else "latency spike"
            new_limit = int(current * self._config.controller_decrease_factor)
            self._slow_start_threshold = max(self._config.min_concurrency, new_limit)
            logger.warning(
                f"High {reason} detected. Decreasing concurrency: "
                f"{current} -> {max(self._config.min_concurrency, new_limit)}."
            )
        elif current < self._config.max_concurrency:
            if (
                self._slow_start_threshold is not None
                and current >= self._slow_start_threshold
            ):
                new_limit = current + 1
            else:
                new_limit = current + self._config.controller_increase_amount
            logger.debug(f"Increasing concurrency: {current} -> {new_limit}.")
        else:
            new_limit = current

        self._limit = max(
            self._config.min_concurrency, min(self._config.max_concurrency, new_limit)
        )
        return self._limit
