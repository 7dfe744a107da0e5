"""Column helpers shared by the table models."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import Column, DateTime, TypeDecorator
from sqlalchemy import Enum as SAEnum


def enum_column(enum_cls: type[Enum], **kwargs) -> Column:
    """Build a VARCHAR-backed enum column that stores member values ("pending"), not names."""
    return Column(
        SAEnum(
            enum_cls,
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        **kwargs,
    )


class UTCDateTime(TypeDecorator):
    """Timestamp stored as naive UTC and loaded as an aware UTC datetime.

    Naive values on the way in are taken to already be UTC.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is not None:
            value = value.replace(tzinfo=UTC)
        return value
