"""Billing Models - Line items and bill headers of AWS Cost and Usage Reports."""

import dataclasses
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Pattern

from record_decoder import FLOAT, TEXT, TIMESTAMP, FieldBinding, RecordDecoder, read_table
from zone_cache import ZoneInfo

logger = logging.getLogger(__name__)

PRODUCT_CODE_COLUMN = "lineItem/ProductCode"


@dataclass(frozen=True)
class LineItem:
    """One row of a Cost and Usage Report."""

    identity_line_item_id: str = ""
    usage_account_id: str = ""
    line_item_type: str = ""
    usage_start: Optional[datetime] = None
    usage_end: Optional[datetime] = None
    product_code: str = ""
    usage_type: str = ""
    operation: str = ""
    availability_zone: str = ""
    resource_id: str = ""
    usage_amount: float = 0.0
    currency_code: str = ""
    unblended_rate: float = 0.0
    unblended_cost: float = 0.0
    blended_rate: float = 0.0
    blended_cost: float = 0.0
    description: str = ""
    tax_type: str = ""
    zone: Optional[ZoneInfo] = None

    def with_zone(self, zone: ZoneInfo) -> "LineItem":
        return dataclasses.replace(self, zone=zone)


LINE_ITEM_FIELDS = (
    FieldBinding("identity/LineItemId", "identity_line_item_id"),
    FieldBinding("lineItem/UsageAccountId", "usage_account_id"),
    FieldBinding("lineItem/LineItemType", "line_item_type"),
    FieldBinding("lineItem/UsageStartDate", "usage_start", TIMESTAMP),
    FieldBinding("lineItem/UsageEndDate", "usage_end", TIMESTAMP),
    FieldBinding("lineItem/ProductCode", "product_code"),
    FieldBinding("lineItem/UsageType", "usage_type"),
    FieldBinding("lineItem/Operation", "operation"),
    FieldBinding("lineItem/AvailabilityZone", "availability_zone"),
    FieldBinding("lineItem/ResourceId", "resource_id"),
    FieldBinding("lineItem/UsageAmount", "usage_amount", FLOAT),
    FieldBinding("lineItem/CurrencyCode", "currency_code"),
    FieldBinding("lineItem/UnblendedRate", "unblended_rate", FLOAT),
    FieldBinding("lineItem/UnblendedCost", "unblended_cost", FLOAT),
    FieldBinding("lineItem/BlendedRate", "blended_rate", FLOAT),
    FieldBinding("lineItem/BlendedCost", "blended_cost", FLOAT),
    FieldBinding("lineItem/LineItemDescription", "description"),
    FieldBinding("lineItem/TaxType", "tax_type"),
)


@dataclass
class BillHeader:
    """Invoice level fields of one report plus its line items."""

    invoice_id: str = ""
    billing_entity: str = ""
    bill_type: str = ""
    payer_account_id: str = ""
    billing_period_start: Optional[datetime] = None
    billing_period_end: Optional[datetime] = None
    line_items: List[LineItem] = field(default_factory=list)


BILL_HEADER_FIELDS = (
    FieldBinding("bill/InvoiceId", "invoice_id", TEXT),
    FieldBinding("bill/BillingEntity", "billing_entity", TEXT),
    FieldBinding("bill/BillType", "bill_type", TEXT),
    FieldBinding("bill/PayerAccountId", "payer_account_id", TEXT),
    FieldBinding("bill/BillingPeriodStartDate", "billing_period_start", TIMESTAMP),
    FieldBinding("bill/BillingPeriodEndDate", "billing_period_end", TIMESTAMP),
)

line_item_decoder = RecordDecoder(LineItem, LINE_ITEM_FIELDS)
bill_header_decoder = RecordDecoder(BillHeader, BILL_HEADER_FIELDS)


def read_bill(
    data: bytes,
    product_codes: Pattern[str],
    enrich: Optional[Callable[[LineItem], LineItem]] = None,
) -> BillHeader:
    """
    Decode an uncompressed report into a bill.

    The invoice fields are the same on every row, so they are taken from the
    first data row. Only rows whose product code matches ``product_codes``
    become line items.

    Raises:
        DecodeError: If the report is not a readable table
    """
    df = read_table(data)

    headers = bill_header_decoder.decode_frame(df.head(1))
    bill = headers[0] if headers else BillHeader()

    bill.line_items = line_item_decoder.decode_frame(
        df,
        where={PRODUCT_CODE_COLUMN: product_codes.search},
        enrich=enrich,
    )
    logger.debug(
        f"Bill {bill.invoice_id or '(no invoice)'}: {len(bill.line_items)} of {len(df)} rows kept"
    )
    return bill


def compile_product_codes(expression: str) -> Pattern[str]:
    """Compile the product code filter. Raises re.error on a bad expression."""
    return re.compile(expression)
