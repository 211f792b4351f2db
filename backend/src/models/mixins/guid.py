"""
GUID mixin for SQLAlchemy models.

Provides UUID-based Global Unique Identifiers for externally visible
entities. Integer primary keys never leave the service layer; URLs and API
payloads only carry GUIDs.

GUID Format: {prefix}_{base32_uuid}
Examples:
    - ser_01hgw2bbg0000000000000000 (RecurringEventSeries)
    - evt_01hgw2bbg0000000000000001 (SeriesInstance)
    - reg_01hgw2bbg0000000000000002 (VolunteerRegistration)
"""

import uuid as uuid_module
from typing import ClassVar, Optional

from sqlalchemy import Column, TypeDecorator, LargeBinary
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from uuid_extensions import uuid7

from backend.src.services.guid import GuidService


class UUIDType(TypeDecorator):
    """
    Platform-independent UUID type.

    Native UUID on PostgreSQL, 16-byte LargeBinary elsewhere (SQLite in tests).
    Always presents as a Python UUID object.
    """

    impl = LargeBinary
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(LargeBinary(16))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid_module.UUID):
            value = (
                uuid_module.UUID(bytes=value) if isinstance(value, bytes)
                else uuid_module.UUID(str(value))
            )
        return value if dialect.name == 'postgresql' else value.bytes

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid_module.UUID):
            return value
        if isinstance(value, bytes):
            return uuid_module.UUID(bytes=value)
        return uuid_module.UUID(str(value))


class GuidMixin:
    """
    Mixin providing GUID support for entities.

    Adds:
    - uuid: UUIDv7 column (time-ordered, unique, indexed)
    - guid: Property returning the prefixed Base32 string
    - parse_guid: Class method decoding a GUID string back to a UUID

    Usage:
        class RecurringEventSeries(Base, GuidMixin):
            GUID_PREFIX = "ser"
    """

    # Subclasses must define their 3-character prefix
    GUID_PREFIX: ClassVar[str]

    uuid = Column(
        UUIDType(),
        nullable=False,
        unique=True,
        index=True,
        default=uuid7,
    )

    @property
    def guid(self) -> Optional[str]:
        """Full GUID with prefix, or None before the row is flushed."""
        if self.uuid is None:
            return None
        return GuidService.encode_uuid(self.uuid, self.GUID_PREFIX)

    @classmethod
    def parse_guid(cls, guid: str) -> uuid_module.UUID:
        """
        Parse a GUID string for this entity type.

        Raises:
            ValueError: If the GUID format is invalid or prefix doesn't match
        """
        return GuidService.parse_guid(guid, cls.GUID_PREFIX)
