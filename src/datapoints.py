"""Data Points - Output model, tag cleaning and sinks for collected metrics."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, TextIO, Union

import polars as pl
from tqdm import tqdm

logger = logging.getLogger(__name__)


class RateType(str, Enum):
    """How a metric's values relate to each other over time."""

    GAUGE = "gauge"
    COUNTER = "counter"
    RATE = "rate"


class Unit(str, Enum):
    """Unit of a metric value."""

    BYTES = "bytes"
    BYTES_PER_SECOND = "bytes per second"
    COUNT = "count"
    MILLISECONDS = "milliseconds"
    OK = "ok"  # 0 = ok, 1 = not ok
    PERCENT = "percent"
    PER_SECOND = "per second"
    SECONDS = "seconds"


class TagError(ValueError):
    """Raised when a tag key or value cleans to an empty string."""


def _is_valid_char(char: str) -> bool:
    return char.isalnum() or char in "-_./"


def replace_invalid(value: str, replacement: str = "") -> str:
    """
    Replace characters that the time-series backend does not accept.

    A run of consecutive invalid characters is replaced by a single
    ``replacement``. Valid characters are letters, digits, ``-``, ``_``,
    ``.`` and ``/``.

    Raises:
        TagError: If nothing is left after cleaning
    """
    cleaned = []
    replaced = False
    for char in value:
        if _is_valid_char(char):
            cleaned.append(char)
            replaced = False
        elif not replaced:
            cleaned.append(replacement)
            replaced = True

    result = "".join(cleaned)
    if not result:
        raise TagError(f"clean result is empty for {value!r}")
    return result


def clean_tags(tags: Dict[str, str]) -> Dict[str, str]:
    """
    Return a copy of ``tags`` with invalid characters stripped.

    Tags whose key or value cleans to nothing are dropped.
    """
    cleaned: Dict[str, str] = {}
    for key, value in tags.items():
        try:
            cleaned[replace_invalid(key)] = replace_invalid(value)
        except TagError:
            logger.debug(f"Dropping tag {key}={value!r}: nothing left after cleaning")
    return cleaned


@dataclass(frozen=True)
class DataPoint:
    """One timestamped metric value."""

    metric: str
    timestamp: int
    value: float
    tags: Dict[str, str] = field(default_factory=dict)
    rate: RateType = RateType.GAUGE
    unit: Unit = Unit.COUNT
    description: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "metric": self.metric,
            "timestamp": self.timestamp,
            "value": self.value,
            "tags": dict(self.tags),
            "rate": self.rate.value,
            "unit": self.unit.value,
            "description": self.description,
        }


def add_point(
    points: List[DataPoint],
    metric: str,
    timestamp: int,
    value: float,
    tags: Dict[str, str],
    rate: RateType = RateType.GAUGE,
    unit: Unit = Unit.COUNT,
    description: str = "",
) -> None:
    """Clean ``tags`` and append a new data point to ``points``."""
    points.append(
        DataPoint(
            metric=metric,
            timestamp=timestamp,
            value=float(value),
            tags=clean_tags(tags),
            rate=rate,
            unit=unit,
            description=description,
        )
    )


def write_json_lines(points: Iterable[DataPoint], stream: TextIO, progress: bool = False) -> int:
    """
    Write points to ``stream`` as JSON lines.

    Returns:
        Number of points written
    """
    count = 0
    for point in tqdm(points, desc="Writing data points", unit="pt", disable=not progress):
        stream.write(json.dumps(point.to_dict(), sort_keys=True))
        stream.write("\n")
        count += 1
    return count


def points_to_frame(points: Iterable[DataPoint]) -> pl.DataFrame:
    """Flatten points into a DataFrame with tags rendered as ``k=v,k=v``."""
    rows = [
        {
            "metric": p.metric,
            "timestamp": p.timestamp,
            "value": p.value,
            "tags": ",".join(f"{k}={v}" for k, v in sorted(p.tags.items())),
            "rate": p.rate.value,
            "unit": p.unit.value,
            "description": p.description,
        }
        for p in points
    ]
    schema = {
        "metric": pl.Utf8,
        "timestamp": pl.Int64,
        "value": pl.Float64,
        "tags": pl.Utf8,
        "rate": pl.Utf8,
        "unit": pl.Utf8,
        "description": pl.Utf8,
    }
    return pl.DataFrame(rows, schema=schema)


def write_csv(points: Iterable[DataPoint], path: Union[str, Path]) -> int:
    """
    Append points to a CSV file, writing the header only to a new file.

    Returns:
        Number of rows written
    """
    path = Path(path)
    df = points_to_frame(points)
    new_file = not path.exists() or path.stat().st_size == 0
    with open(path, "ab") as f:
        df.write_csv(f, include_header=new_file)
    logger.info(f"Wrote {len(df)} data points to {path}")
    return len(df)


def format_tags(tags: Optional[Dict[str, str]]) -> str:
    """Render tags the way the backend displays them: ``{k=v,k=v}``."""
    if not tags:
        return "{}"
    return "{" + ",".join(f"{k}={v}" for k, v in sorted(tags.items())) + "}"
