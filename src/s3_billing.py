"""S3 Billing Collector - Ingests AWS Cost and Usage Reports from S3 into billing time series."""

import gzip
import logging
import os
import tempfile
import zlib
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Hashable, List, Optional, Tuple

import boto3
from botocore.config import Config
from boto3.exceptions import Boto3Error
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from bill_aggregator import BillAggregator
from billing_models import BillHeader, compile_product_codes, read_bill
from datapoints import DataPoint
from object_keys import ObjectKeyDescriptor, StorageObject, parse_object_key
from record_decoder import DecodeError
from zone_cache import ZoneCache, route53_fetcher

logger = logging.getLogger(__name__)

REPORT_EXTENSION = ".gz"
DEFAULT_PRODUCT_CODES = ".*"


class BillingCollectionError(Exception):
    """
    A collection run stopped at ``stage``.

    ``points`` holds the data points produced by objects processed before the
    failure.
    """

    def __init__(
        self,
        stage: str,
        cause: BaseException,
        key: Optional[str] = None,
        points: Optional[List[DataPoint]] = None,
    ) -> None:
        self.stage = stage
        self.cause = cause
        self.key = key
        self.points = points or []
        target = f" for {key}" if key else ""
        super().__init__(f"billing {stage} failed{target}: {cause}")


class BillingCollector:
    """Collect AWS billing metrics from Cost and Usage Reports delivered to S3."""

    def __init__(
        self,
        bucket: str,
        prefix: str,
        product_codes: str = DEFAULT_PRODUCT_CODES,
        purge_days: int = 0,
        aws_profile: Optional[str] = None,
        aws_region: Optional[str] = None,
        host: Optional[str] = None,
        zone_cache: Optional[ZoneCache] = None,
        connect_timeout: float = 10,
        read_timeout: float = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        """
        Initialize the billing collector.

        Args:
            bucket: S3 bucket the billing reports are delivered to
            prefix: Report path prefix configured on the export
            product_codes: Regular expression selecting product codes to collect
            purge_days: Delete objects older than this many days (0 = never)
            aws_profile: AWS profile name (optional)
            aws_region: AWS region (optional)
            host: Value of the host tag (None = this machine's hostname)
            zone_cache: Route 53 zone cache (None = one backed by this session)
            connect_timeout: Seconds to wait for a connection to AWS
            read_timeout: Seconds to wait for an AWS response

        Raises:
            re.error: If ``product_codes`` is not a valid regular expression
        """
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.product_codes = compile_product_codes(product_codes)
        self.purge_days = purge_days
        self._clock = clock
        self.aggregator = BillAggregator(host=host)

        self._session_params: Dict[str, str] = {}
        if aws_profile:
            self._session_params["profile_name"] = aws_profile
        if aws_region:
            self._session_params["region_name"] = aws_region

        client_config = Config(connect_timeout=connect_timeout, read_timeout=read_timeout)
        try:
            self.session = boto3.Session(**self._session_params)
            self.s3_client = self.session.client("s3", config=client_config)
            route53_client = self.session.client("route53", config=client_config)
            logger.info(f"Initialized S3 client for bucket: {bucket}")
        except NoCredentialsError:
            logger.error("AWS credentials not found. Please configure credentials.")
            raise
        except Exception as e:
            logger.error(f"Error initializing AWS session: {e}")
            raise

        if zone_cache is None:
            zone_cache = ZoneCache(route53_fetcher(route53_client))
        self.zone_cache = zone_cache

    def purge_cutoff(self) -> Optional[datetime]:
        """Objects last modified before this time are purged. None when purging is off."""
        if self.purge_days <= 0:
            return None
        return self._clock() - timedelta(days=self.purge_days)

    def list_objects(self) -> List[StorageObject]:
        """
        List every object under the prefix.

        All pages are read before anything is returned; a failure on any page
        fails the whole listing.
        """
        logger.info(f"Listing billing objects in s3://{self.bucket}/{self.prefix}")
        paginator = self.s3_client.get_paginator("list_objects_v2")
        pages = paginator.paginate(Bucket=self.bucket, Prefix=self.prefix)

        objects = []
        for page in pages:
            for obj in page.get("Contents", []):
                last_modified = obj["LastModified"]
                if last_modified.tzinfo is None:
                    last_modified = last_modified.replace(tzinfo=timezone.utc)
                objects.append(StorageObject(key=obj["Key"], last_modified=last_modified))

        logger.info(f"Found {len(objects)} objects")
        return objects

    def classify(
        self, objects: List[StorageObject]
    ) -> List[Tuple[StorageObject, ObjectKeyDescriptor]]:
        return [(obj, parse_object_key(obj.key, self.prefix)) for obj in objects]

    @staticmethod
    def period_key(obj: StorageObject, descriptor: ObjectKeyDescriptor) -> Hashable:
        """
        Billing period an object reports on.

        Keyed by the period start parsed from the key rather than by the
        month the object was last modified, so a report for January delivered
        in early February still counts as January. The last modified month is
        used only when the period segment does not parse.
        """
        if descriptor.report_start is not None:
            return (descriptor.report_start.year, descriptor.report_start.month)
        return (obj.last_modified.year, obj.last_modified.month)

    def select_latest(
        self, classified: List[Tuple[StorageObject, ObjectKeyDescriptor]]
    ) -> List[Tuple[StorageObject, ObjectKeyDescriptor]]:
        """
        Pick the most recently modified report for every billing period.

        Returns:
            Accepted objects, newest first
        """
        ordered = sorted(classified, key=lambda pair: pair[0].last_modified, reverse=True)
        seen = set()
        accepted = []
        for obj, descriptor in ordered:
            if descriptor.is_empty:
                continue
            if not descriptor.file_name.endswith(REPORT_EXTENSION):
                continue
            if descriptor.report_name not in descriptor.file_name:
                continue
            period = self.period_key(obj, descriptor)
            if period in seen:
                logger.debug(f"Skipping {obj.key}: newer report already selected for {period}")
                continue
            seen.add(period)
            accepted.append((obj, descriptor))
        return accepted

    def download_report(self, key: str) -> bytes:
        """
        Download a gzipped report and return its uncompressed contents.

        The download is staged in a temporary directory that is removed on
        every exit path.

        Raises:
            BillingCollectionError: With stage ``download`` or ``decompress``
        """
        with tempfile.TemporaryDirectory(prefix="aws-billing-") as tmp_dir:
            local_path = os.path.join(tmp_dir, os.path.basename(key) or "report.gz")
            try:
                self.s3_client.download_file(self.bucket, key, local_path)
            except (ClientError, BotoCoreError, Boto3Error) as e:
                logger.error(f"Failed to download {key}: {e}")
                raise BillingCollectionError("download", e, key=key) from e

            try:
                with gzip.open(local_path, "rb") as f:
                    return f.read()
            except (OSError, EOFError, zlib.error) as e:
                logger.error(f"Failed to decompress {key}: {e}")
                raise BillingCollectionError("decompress", e, key=key) from e

    def read_report(self, key: str) -> BillHeader:
        data = self.download_report(key)
        try:
            return read_bill(data, self.product_codes, enrich=self.zone_cache.enrich)
        except DecodeError as e:
            logger.error(f"Failed to decode {key}: {e}")
            raise BillingCollectionError("decode", e, key=key) from e
        except Exception as e:
            logger.exception(f"Unexpected error decoding {key}")
            raise BillingCollectionError("decode", e, key=key) from e

    def purge(self, objects: List[StorageObject]) -> int:
        """
        Delete objects older than the retention window.

        Delete failures are logged and skipped.

        Returns:
            Number of objects deleted
        """
        cutoff = self.purge_cutoff()
        if cutoff is None:
            logger.info("S3 purging of objects is disabled")
            return 0

        deleted = 0
        for obj in objects:
            if obj.last_modified >= cutoff:
                continue
            logger.info(f"Purging s3://{self.bucket}/{obj.key}, last modified {obj.last_modified}")
            try:
                self.s3_client.delete_object(Bucket=self.bucket, Key=obj.key)
                deleted += 1
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"Error deleting object {obj.key}: {e}")
        return deleted

    def collect(self) -> List[DataPoint]:
        """
        Run one collection.

        Returns:
            Data points for the newest report of every billing period

        Raises:
            BillingCollectionError: On the first listing, download, decompress,
                decode or aggregation failure. Objects past the retention
                window are purged even when processing fails.
        """
        try:
            objects = self.list_objects()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing S3 objects: {e}")
            raise BillingCollectionError("list", e) from e

        points: List[DataPoint] = []
        processed = 0
        try:
            accepted = self.select_latest(self.classify(objects))
            logger.info(f"Selected {len(accepted)} reports to process")

            for obj, _ in accepted:
                try:
                    bill = self.read_report(obj.key)
                except BillingCollectionError as e:
                    e.points = list(points)
                    raise

                try:
                    bill_points = self.aggregator.aggregate(bill)
                except Exception as e:
                    logger.error(f"Failed to aggregate {obj.key}: {e}")
                    raise BillingCollectionError(
                        "aggregate", e, key=obj.key, points=list(points)
                    ) from e

                logger.info(
                    f"Processed {obj.key}: {len(bill.line_items)} line items, "
                    f"{len(bill_points)} data points"
                )
                points.extend(bill_points)
                processed += 1
        finally:
            purged = self.purge(objects)
            logger.info(
                f"Billing run: {len(objects)} objects listed, {processed} processed, "
                f"{purged} purged, {len(points)} data points"
            )

        return points
