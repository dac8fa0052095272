"""Column types shared by the impact models.

Portable across Postgres (deployment) and SQLite (tests): enums are stored by
value as constrained strings and JSON upgrades to JSONB on Postgres.
"""

from services.impact_service.models.enums import enum_values
from sqlalchemy import JSON
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


def value_enum(enum_cls, name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=enum_values,
        validate_strings=True,
    )
