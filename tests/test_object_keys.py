"""Tests for object key classification."""

import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from object_keys import EMPTY_DESCRIPTOR, parse_object_key, parse_report_date


class TestParseObjectKey:
    """Test cases for parse_object_key."""

    def test_report_key(self):
        key = "billing/test-cur/20240101-20240201/test-cur-1.csv.gz"
        descriptor = parse_object_key(key, "billing")

        assert descriptor.report_name == "test-cur"
        assert descriptor.report_start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert descriptor.report_end == datetime(2024, 2, 1, tzinfo=timezone.utc)
        assert descriptor.report_id == ""
        assert descriptor.file_name == "test-cur-1.csv.gz"
        assert descriptor.file_path == key
        assert not descriptor.is_empty

    def test_report_key_with_report_id(self):
        key = "billing/test-cur/20240301-20240401/6b3c-44e1/test-cur-1.csv.gz"
        descriptor = parse_object_key(key, "billing")

        assert descriptor.report_id == "6b3c-44e1"
        assert descriptor.report_name == "test-cur"
        assert descriptor.file_name == "test-cur-1.csv.gz"

    def test_prefix_with_slashes(self):
        key = "org/billing/test-cur/20240101-20240201/test-cur-1.csv.gz"
        descriptor = parse_object_key(key, "org/billing/")

        assert descriptor.report_name == "test-cur"
        assert descriptor.report_start == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_prefix_mismatch(self):
        key = "other/test-cur/20240101-20240201/test-cur-1.csv.gz"
        assert parse_object_key(key, "billing") is EMPTY_DESCRIPTOR

    def test_prefix_must_match_whole_segment(self):
        key = "billing-old/test-cur/20240101-20240201/test-cur-1.csv.gz"
        assert parse_object_key(key, "billing").is_empty

    def test_two_segment_key_is_empty(self):
        descriptor = parse_object_key("billing/aws-programmatic-access-test-object", "billing")
        assert descriptor.is_empty

    def test_missing_period_segment_is_empty(self):
        assert parse_object_key("billing/test-cur/test-cur-1.csv.gz", "billing").is_empty

    def test_key_without_directory(self):
        assert parse_object_key("test-cur-1.csv.gz", "billing").is_empty

    def test_directory_key_is_empty(self):
        assert parse_object_key("billing/test-cur/20240101-20240201/", "billing").is_empty

    def test_empty_segment_is_empty(self):
        assert parse_object_key("billing/test-cur//test-cur-1.csv.gz", "billing").is_empty

    def test_unparseable_period_keeps_descriptor(self):
        descriptor = parse_object_key("billing/test-cur/latest/test-cur-1.csv.gz", "billing")

        assert not descriptor.is_empty
        assert descriptor.report_start is None
        assert descriptor.report_end is None

    def test_no_prefix(self):
        descriptor = parse_object_key("test-cur/20240101-20240201/test-cur-1.csv.gz", "")
        assert descriptor.report_name == "test-cur"


class TestParseReportDate:
    """Test cases for parse_report_date."""

    def test_valid(self):
        assert parse_report_date("20241201") == datetime(2024, 12, 1, tzinfo=timezone.utc)

    def test_invalid(self):
        assert parse_report_date("2024-12-01") is None
        assert parse_report_date("") is None
        assert parse_report_date("20241301") is None
