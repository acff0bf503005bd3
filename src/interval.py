"""Interval Collector - Runs a collection function on a timer and forwards its data points."""

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

from datapoints import DataPoint, RateType, Unit, add_point, format_tags
from s3_billing import BillingCollectionError

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3600.0


class IntervalCollector:
    """
    Call ``func`` every ``interval`` seconds.

    Invocations of one collector never overlap: the next run starts only after
    the previous one returned and the interval elapsed.
    """

    def __init__(
        self,
        func: Callable[[], List[DataPoint]],
        interval: float = DEFAULT_INTERVAL,
        name: Optional[str] = None,
        self_metrics: bool = True,
    ) -> None:
        self.func = func
        self.interval = interval
        self.name = name or getattr(func, "__name__", "collector")
        self.self_metrics = self_metrics

    def run_once(self) -> List[DataPoint]:
        """
        Invoke the collector once.

        Errors are logged, not raised. Points produced before a billing
        collection failure are still returned.
        """
        started = time.monotonic()
        failed = 0
        points: List[DataPoint] = []
        try:
            points = list(self.func())
        except BillingCollectionError as e:
            logger.error(f"{self.name}: {e}")
            points = list(e.points)
            failed = 1
        except Exception:
            logger.exception(f"{self.name}: collection failed")
            failed = 1

        if self.self_metrics:
            tags = {"collector": self.name}
            add_point(
                points, "billing.collector.duration", int(time.time()),
                time.monotonic() - started, tags, RateType.GAUGE, Unit.SECONDS,
                "Duration in seconds for each collector run.",
            )
            add_point(
                points, "billing.collector.error", int(time.time()), failed, tags,
                RateType.GAUGE, Unit.OK, "Status of collector run. 1=Error, 0=Success.",
            )
        return points

    def run(self, out: "queue.Queue[DataPoint]", stop: threading.Event) -> None:
        """Collect until ``stop`` is set, putting every point on ``out``."""
        while not stop.is_set():
            points = self.run_once()
            for point in points:
                logger.debug(f"{point.metric}{format_tags(point.tags)} {point.timestamp} {point.value}")
                out.put(point)
            stop.wait(self.interval)
