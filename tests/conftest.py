"""Pytest fixtures and configuration for test suite."""

import csv
import gzip
import io
from datetime import datetime, timezone

import pytest

# Column layout of a legacy Cost and Usage Report
CUR_HEADER = [
    "identity/LineItemId",
    "identity/TimeInterval",
    "bill/InvoiceId",
    "bill/BillingEntity",
    "bill/BillType",
    "bill/PayerAccountId",
    "bill/BillingPeriodStartDate",
    "bill/BillingPeriodEndDate",
    "lineItem/UsageAccountId",
    "lineItem/LineItemType",
    "lineItem/UsageStartDate",
    "lineItem/UsageEndDate",
    "lineItem/ProductCode",
    "lineItem/UsageType",
    "lineItem/Operation",
    "lineItem/AvailabilityZone",
    "lineItem/ResourceId",
    "lineItem/UsageAmount",
    "lineItem/CurrencyCode",
    "lineItem/UnblendedRate",
    "lineItem/UnblendedCost",
    "lineItem/BlendedRate",
    "lineItem/BlendedCost",
    "lineItem/LineItemDescription",
    "lineItem/TaxType",
]


def _line_item(**overrides):
    row = {
        "identity/LineItemId": "li-0001",
        "identity/TimeInterval": "2024-03-01T00:00:00Z/2024-03-01T01:00:00Z",
        "bill/InvoiceId": "INV-2024-03",
        "bill/BillingEntity": "AWS",
        "bill/BillType": "Anniversary",
        "bill/PayerAccountId": "111111111111",
        "bill/BillingPeriodStartDate": "2024-03-01T00:00:00Z",
        "bill/BillingPeriodEndDate": "2024-04-01T00:00:00Z",
        "lineItem/UsageAccountId": "111111111111",
        "lineItem/LineItemType": "Usage",
        "lineItem/UsageStartDate": "2024-03-01T00:00:00Z",
        "lineItem/UsageEndDate": "2024-03-01T01:00:00Z",
        "lineItem/ProductCode": "AmazonEC2",
        "lineItem/UsageType": "BoxUsage:t3.micro",
        "lineItem/Operation": "RunInstances",
        "lineItem/AvailabilityZone": "us-east-1a",
        "lineItem/ResourceId": "i-0abc123",
        "lineItem/UsageAmount": "1",
        "lineItem/CurrencyCode": "USD",
        "lineItem/UnblendedRate": "0.0104",
        "lineItem/UnblendedCost": "0.0104",
        "lineItem/BlendedRate": "0.0104",
        "lineItem/BlendedCost": "0.0104",
        "lineItem/LineItemDescription": "$0.0104 per On Demand Linux t3.micro Instance Hour",
        "lineItem/TaxType": "",
    }
    row.update(overrides)
    return row


def _to_csv(rows, header=None):
    header = header or CUR_HEADER
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    for row in rows:
        if isinstance(row, dict):
            writer.writerow([row.get(name, "") for name in header])
        else:
            writer.writerow(row)
    return buffer.getvalue().encode("utf-8")


def _gzip(content):
    buffer = io.BytesIO()
    with gzip.GzipFile(fileobj=buffer, mode="wb") as gz:
        gz.write(content)
    return buffer.getvalue()


@pytest.fixture
def cur_header():
    """Header row of the sample reports."""
    return list(CUR_HEADER)


@pytest.fixture
def line_item():
    """Factory for one report row as a header -> cell dict."""
    return _line_item


@pytest.fixture
def cur_csv():
    """Factory turning rows (dicts or raw lists) into CSV bytes."""
    return _to_csv


@pytest.fixture
def gzip_bytes():
    """Factory gzipping bytes."""
    return _gzip


@pytest.fixture
def sample_report_rows():
    """A small month of mixed usage, including Glacier storage and Route 53 queries."""
    return [
        _line_item(),
        _line_item(**{
            "identity/LineItemId": "li-0002",
            "lineItem/ResourceId": "i-0def456",
            "lineItem/UnblendedCost": "0.0208",
            "lineItem/UsageAmount": "2",
        }),
        _line_item(**{
            "identity/LineItemId": "li-0003",
            "lineItem/ProductCode": "AmazonGlacier",
            "lineItem/UsageType": "TimedStorage-ByteHrs",
            "lineItem/Operation": "Storage",
            "lineItem/ResourceId": "arn:aws:glacier:us-east-1:111111111111:vaults/archive",
            "lineItem/UsageStartDate": "2024-03-01T00:00:00Z",
            "lineItem/UsageEndDate": "2024-03-02T00:00:00Z",
            "lineItem/UsageAmount": "240",
            "lineItem/UnblendedCost": "24.0",
        }),
        _line_item(**{
            "identity/LineItemId": "li-0004",
            "lineItem/ProductCode": "AmazonRoute53",
            "lineItem/UsageType": "DNS-Queries",
            "lineItem/Operation": "Queries",
            "lineItem/ResourceId": "arn:aws:route53:::hostedzone/Z1D633PJN98FT9",
            "lineItem/UsageAmount": "1000",
            "lineItem/UnblendedCost": "0.0004",
        }),
        _line_item(**{
            "identity/LineItemId": "li-0005",
            "lineItem/ProductCode": "AmazonS3",
            "lineItem/UsageType": "Requests-Tier1",
            "lineItem/Operation": "PutObject",
            "lineItem/ResourceId": "billing-reports",
            "lineItem/UsageAmount": "300",
            "lineItem/UnblendedCost": "0.0015",
        }),
    ]


@pytest.fixture
def sample_report_gz(sample_report_rows):
    """Gzipped CSV report built from ``sample_report_rows``."""
    return _gzip(_to_csv(sample_report_rows))


@pytest.fixture
def mock_s3_objects():
    """Listing of a billing bucket with three months of report deliveries."""
    return [
        # January 2024 - final report delivered early February
        {
            "Key": "billing/test-cur/20240101-20240201/test-cur-1.csv.gz",
            "LastModified": datetime(2024, 2, 3, tzinfo=timezone.utc),
            "Size": 2048,
        },
        {
            "Key": "billing/test-cur/20240101-20240201/test-cur-Manifest.json",
            "LastModified": datetime(2024, 2, 3, tzinfo=timezone.utc),
            "Size": 512,
        },
        # February 2024
        {
            "Key": "billing/test-cur/20240201-20240301/test-cur-1.csv.gz",
            "LastModified": datetime(2024, 3, 2, tzinfo=timezone.utc),
            "Size": 2048,
        },
        # March 2024 - in progress, two deliveries so far
        {
            "Key": "billing/test-cur/20240301-20240401/aaaa-1111/test-cur-1.csv.gz",
            "LastModified": datetime(2024, 3, 10, tzinfo=timezone.utc),
            "Size": 2048,
        },
        {
            "Key": "billing/test-cur/20240301-20240401/bbbb-2222/test-cur-1.csv.gz",
            "LastModified": datetime(2024, 3, 20, tzinfo=timezone.utc),
            "Size": 2048,
        },
        # Not a report
        {
            "Key": "billing/aws-programmatic-access-test-object",
            "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "Size": 0,
        },
    ]


@pytest.fixture
def fixed_now():
    """Wall clock used for purge cutoffs."""
    return datetime(2024, 3, 25, tzinfo=timezone.utc)


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set mock environment variables for testing."""
    monkeypatch.setenv("AWS_BILLING_BUCKET", "test-bucket")
    monkeypatch.setenv("AWS_BILLING_PREFIX", "billing")
    monkeypatch.setenv("AWS_REGION", "us-east-1")
    monkeypatch.setenv("AWS_PROFILE", "test-profile")
    monkeypatch.delenv("AWS_BILLING_PRODUCT_CODES", raising=False)
    monkeypatch.delenv("AWS_BILLING_PURGE_DAYS", raising=False)
