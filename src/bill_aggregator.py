"""Bill Aggregator - Converts billing line items into cost and usage time series using Polars."""

import logging
import socket
from datetime import timedelta
from typing import Dict, List, Optional, Tuple

import polars as pl

from billing_models import BillHeader, LineItem
from datapoints import DataPoint, RateType, Unit, add_point
from zone_cache import ROUTE53_PRODUCT_CODE

logger = logging.getLogger(__name__)

METRIC_ROOT = "aws.billing"
COST_BY_PRODUCT_METRIC = f"{METRIC_ROOT}.cost_by_product"

# Glacier bills storage per day, not per hour
DAILY_BILLED_PRODUCT = "AmazonGlacier"
DAILY_BILLED_OPERATION = "Storage"
HOURS_PER_DAY = 24

_DENORMALIZED_SCHEMA = {
    "metric": pl.Utf8,
    "timestamp": pl.Int64,
    "tag_key": pl.Utf8,
    "tag_value": pl.Utf8,
    "value": pl.Float64,
}


def metric_code(product_code: str) -> str:
    """AmazonEC2 -> ec2, AWSLambda -> awslambda."""
    return product_code.lower().replace("amazon", "", 1)


def resource_tag(item: LineItem) -> str:
    """Resource tag value for a line item, or '' when it has none."""
    if item.product_code == ROUTE53_PRODUCT_CODE and item.zone is not None and item.zone.name:
        return item.zone.name.lower()
    if not item.resource_id:
        return ""
    value = item.resource_id.replace("/", "-").replace(":", "-")
    return value.replace("[", "").replace("]", "").lower()


def line_item_tags(item: LineItem, host: str) -> Dict[str, str]:
    tags = {"host": host, "operation": item.operation}
    # Usage type is always DNS-Queries for Route 53
    if item.product_code != ROUTE53_PRODUCT_CODE:
        tags["usagetype"] = item.usage_type
    resource = resource_tag(item)
    if resource:
        tags["resourceid"] = resource
    return tags


def is_daily_billed(item: LineItem) -> bool:
    return item.product_code == DAILY_BILLED_PRODUCT and item.operation == DAILY_BILLED_OPERATION


def hourly_values(item: LineItem) -> List[Tuple[int, float, float]]:
    """
    Split a line item into (timestamp, cost, usage) points.

    Daily billed storage is spread over the 24 hours ending at the usage end
    time: cost is divided evenly, usage is repeated for every hour.
    """
    if item.usage_end is None:
        return []
    if not is_daily_billed(item):
        return [(int(item.usage_end.timestamp()), item.unblended_cost, item.usage_amount)]

    hourly_cost = item.unblended_cost / HOURS_PER_DAY
    return [
        (int((item.usage_end - timedelta(hours=hour)).timestamp()), hourly_cost, item.usage_amount)
        for hour in range(HOURS_PER_DAY)
    ]


class BillAggregator:
    """Fold a bill's line items into per-item and denormalized series."""

    def __init__(self, host: Optional[str] = None) -> None:
        self.host = host if host is not None else socket.gethostname()

    def aggregate(self, bill: BillHeader) -> List[DataPoint]:
        """
        Convert one bill into data points.

        Per-item ``cost``/``usage`` points come first, in line item order,
        followed by the denormalized sums in order of first appearance.
        """
        points: List[DataPoint] = []
        rows: List[Tuple[str, int, str, str, float]] = []
        descriptions: Dict[str, str] = {}
        skipped = 0

        for item in bill.line_items:
            slots = hourly_values(item)
            if not slots:
                skipped += 1
                continue

            code = metric_code(item.product_code)
            tags = line_item_tags(item, self.host)
            cost_metric = f"{METRIC_ROOT}.{code}.cost"
            usage_metric = f"{METRIC_ROOT}.{code}.usage"
            by_operation = f"{METRIC_ROOT}.{code}.usage_by_operation"
            by_resource = f"{METRIC_ROOT}.{code}.usage_by_resource"

            descriptions.setdefault(
                COST_BY_PRODUCT_METRIC,
                "Usage costs per AWS product. Datapoints represent costs for a full hour. "
                "Data typically lags by 24 hours.",
            )
            descriptions.setdefault(
                by_operation,
                f"Usage volume for Amazon {code}, denormalized with only an operation tag. "
                "Datapoints represent a full hour of usage. Data typically lags by 24 hours.",
            )
            descriptions.setdefault(
                by_resource,
                f"Usage volume for Amazon {code}, denormalized with only a resource tag. "
                "Datapoints represent a full hour of usage. Data typically lags by 24 hours.",
            )

            for timestamp, cost, usage in slots:
                add_point(
                    points, cost_metric, timestamp, cost, tags,
                    RateType.GAUGE, Unit.COUNT,
                    f"Usage costs for Amazon {code}. Datapoints represent costs for a full hour. "
                    "Data typically lags by 24 hours.",
                )
                add_point(
                    points, usage_metric, timestamp, usage, tags,
                    RateType.GAUGE, Unit.COUNT,
                    f"Usage volume for Amazon {code}. Datapoints represent a full hour of usage. "
                    "Data typically lags by 24 hours.",
                )

                rows.append((COST_BY_PRODUCT_METRIC, timestamp, "product", code, cost))
                rows.append((by_operation, timestamp, "operation", item.operation, usage))
                if "resourceid" in tags:
                    rows.append((by_resource, timestamp, "resourceid", tags["resourceid"], usage))

        if skipped:
            logger.debug(f"Skipped {skipped} line items without a usage end date")

        points.extend(self._denormalized(rows, descriptions))
        return points

    def _denormalized(
        self, rows: List[Tuple[str, int, str, str, float]], descriptions: Dict[str, str]
    ) -> List[DataPoint]:
        if not rows:
            return []

        totals = (
            pl.DataFrame(rows, schema=_DENORMALIZED_SCHEMA, orient="row")
            .group_by(["metric", "timestamp", "tag_key", "tag_value"], maintain_order=True)
            .agg(pl.col("value").sum())
        )

        points: List[DataPoint] = []
        for row in totals.iter_rows(named=True):
            add_point(
                points,
                row["metric"],
                row["timestamp"],
                row["value"],
                {"host": self.host, row["tag_key"]: row["tag_value"]},
                RateType.GAUGE,
                Unit.COUNT,
                descriptions.get(row["metric"], ""),
            )
        return points
