"""Object Keys - Classifies S3 object keys written by the AWS billing report export."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

REPORT_DATE_FORMAT = "%Y%m%d"


@dataclass(frozen=True)
class StorageObject:
    """One object listed from the billing bucket."""

    key: str
    last_modified: datetime


@dataclass(frozen=True)
class ObjectKeyDescriptor:
    """
    Structure parsed from a billing report key.

    Report keys look like::

        <prefix>/<report-name>/20240101-20240201/<report-name>-1.csv.gz
        <prefix>/<report-name>/20240101-20240201/<report-id>/<report-name>-1.csv.gz

    A key of any other shape yields an empty descriptor.
    """

    report_name: str = ""
    report_start: Optional[datetime] = None
    report_end: Optional[datetime] = None
    report_id: str = ""
    file_name: str = ""
    file_path: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.file_name


EMPTY_DESCRIPTOR = ObjectKeyDescriptor()


def parse_report_date(value: str) -> Optional[datetime]:
    """Parse a YYYYMMDD date as midnight UTC, or None if it does not parse."""
    try:
        return datetime.strptime(value, REPORT_DATE_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None


def parse_object_key(key: str, prefix: str) -> ObjectKeyDescriptor:
    """
    Describe a billing report key.

    Args:
        key: S3 object key
        prefix: Report path prefix configured on the export (may contain '/')

    Returns:
        Populated descriptor, or ``EMPTY_DESCRIPTOR`` when the key is not a
        billing report under ``prefix``
    """
    key_dir, _, file_name = key.rpartition("/")
    if not key_dir or not file_name:
        return EMPTY_DESCRIPTOR

    prefix = prefix.strip("/")
    if prefix:
        if key_dir != prefix and not key_dir.startswith(prefix + "/"):
            return EMPTY_DESCRIPTOR
        key_dir = key_dir[len(prefix) + 1 :]

    # report-name/period[/report-id]
    segments = key_dir.split("/") if key_dir else []
    if len(segments) < 2 or not all(segments):
        return EMPTY_DESCRIPTOR

    period_start, _, period_end = segments[1].partition("-")

    return ObjectKeyDescriptor(
        report_name=segments[0],
        report_start=parse_report_date(period_start),
        report_end=parse_report_date(period_end),
        report_id=segments[2] if len(segments) == 3 else "",
        file_name=file_name,
        file_path=key,
    )
