"""Record Decoder - Turns header-described CSV tables into typed records using Polars."""

import io
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, TypeVar

import polars as pl

logger = logging.getLogger(__name__)

T = TypeVar("T")

TEXT = "text"
FLOAT = "float"
TIMESTAMP = "timestamp"

# Zero value used when a field is unmapped or its cell is missing
ZERO_VALUES: Dict[str, Any] = {
    TEXT: "",
    FLOAT: 0.0,
    TIMESTAMP: None,
}

_TIMESTAMP_DTYPE = pl.Datetime(time_unit="us", time_zone="UTC")


class DecodeError(Exception):
    """Raised when a table cannot be decoded into records."""


@dataclass(frozen=True)
class FieldBinding:
    """Binds one record attribute to a header column."""

    header: str
    attribute: str
    kind: str = TEXT


def read_table(data: bytes) -> pl.DataFrame:
    """
    Read delimited text into a DataFrame with every column as a string.

    The first row is the header. Rows shorter than the header are padded
    with nulls, longer rows are truncated.

    Raises:
        DecodeError: If the payload is empty or not a readable table
    """
    if not data or not data.strip():
        raise DecodeError("table is empty")

    try:
        return pl.read_csv(
            io.BytesIO(data),
            infer_schema=False,
            truncate_ragged_lines=True,
            encoding="utf8-lossy",
        )
    except pl.exceptions.PolarsError as e:
        raise DecodeError(f"unreadable table: {e}") from e


def column_index(header: Sequence[str]) -> Dict[str, int]:
    """Map upper-cased header names to their column position."""
    return {name.upper(): position for position, name in enumerate(header)}


class RecordDecoder(Generic[T]):
    """
    Decode rows of a header-described table into records.

    Bindings are validated once at construction, so a decoder built with an
    unsupported field kind never decodes anything.
    """

    def __init__(self, factory: Callable[..., T], bindings: Sequence[FieldBinding]) -> None:
        """
        Args:
            factory: Callable building a record from keyword arguments
            bindings: Ordered field bindings; attribute names become keyword names

        Raises:
            DecodeError: If a binding declares an unsupported kind
        """
        unsupported = [b for b in bindings if b.kind not in ZERO_VALUES]
        if unsupported:
            names = ", ".join(f"{b.attribute} ({b.kind})" for b in unsupported)
            raise DecodeError(f"unsupported field type for: {names}")

        self.factory = factory
        self.bindings = tuple(bindings)

    def _expressions(self, columns: Sequence[str]) -> List[pl.Expr]:
        index = column_index(columns)
        expressions = []
        for binding in self.bindings:
            position = index.get(binding.header.upper())
            if position is None:
                logger.debug(f"Column '{binding.header}' not in table, using zero value")
                if binding.kind == TIMESTAMP:
                    expr = pl.lit(None, dtype=_TIMESTAMP_DTYPE)
                else:
                    expr = pl.lit(ZERO_VALUES[binding.kind])
                expressions.append(expr.alias(binding.attribute))
                continue

            col = pl.col(columns[position])
            if binding.kind == TEXT:
                expr = col.fill_null("")
            elif binding.kind == FLOAT:
                expr = col.str.strip_chars().cast(pl.Float64, strict=False).fill_null(0.0)
            else:
                # RFC 3339 / ISO 8601 with offset, e.g. 2024-01-15T00:00:00Z
                expr = (
                    col.str.to_datetime(format="%+", strict=False, time_unit="us")
                    .dt.convert_time_zone("UTC")
                )
            expressions.append(expr.alias(binding.attribute))
        return expressions

    def decode_frame(
        self,
        df: pl.DataFrame,
        where: Optional[Mapping[str, Callable[[str], Any]]] = None,
        enrich: Optional[Callable[[T], T]] = None,
    ) -> List[T]:
        """
        Build one record per row of ``df``.

        Args:
            df: Table as returned by ``read_table``
            where: Header name -> predicate on the raw cell text; rows failing
                any predicate are dropped before a record is built
            enrich: Called once per built record; its return value replaces it

        Returns:
            Records in row order
        """
        if where:
            df = self._filter(df, where)
        if df.is_empty():
            return []

        # with_columns broadcasts zero-value literals to the frame height
        attributes = [b.attribute for b in self.bindings]
        typed = df.with_columns(self._expressions(df.columns)).select(attributes)
        records = []
        for row in typed.iter_rows(named=True):
            record = self.factory(**row)
            if enrich is not None:
                record = enrich(record)
            records.append(record)
        return records

    def decode(
        self,
        data: bytes,
        where: Optional[Mapping[str, Callable[[str], Any]]] = None,
        enrich: Optional[Callable[[T], T]] = None,
    ) -> List[T]:
        """Read ``data`` and decode every row. See ``decode_frame``."""
        return self.decode_frame(read_table(data), where=where, enrich=enrich)

    @staticmethod
    def _filter(df: pl.DataFrame, where: Mapping[str, Callable[[str], Any]]) -> pl.DataFrame:
        index = column_index(df.columns)
        mask = [True] * len(df)
        for header, predicate in where.items():
            position = index.get(header.upper())
            if position is None:
                cells: List[Optional[str]] = [None] * len(df)
            else:
                cells = df.get_column(df.columns[position]).to_list()
            mask = [keep and bool(predicate(cell or "")) for keep, cell in zip(mask, cells)]
        return df.filter(pl.Series("keep", mask, dtype=pl.Boolean))
