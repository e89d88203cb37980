"""
Encrypted Entity Models.

Every encrypted column stores payload JSON (or legacy plaintext before
migration) and has two companions:

- ``<field>_search``: search hash, set for searchable fields
- ``<field>_key_id``: key id of the stored payload; NULL means plaintext
"""

from typing import Optional

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from vaultcore.database.base import Base, TimestampMixin, UUIDPrimaryKey

HASH_LENGTH = 64
KEY_ID_LENGTH = 16


class User(Base, TimestampMixin):
    """User record with encrypted identity and contact fields."""

    __tablename__ = "users"

    id: Mapped[UUIDPrimaryKey]
    display_name: Mapped[Optional[str]] = mapped_column(String(255))

    phone_number: Mapped[Optional[str]] = mapped_column(Text)
    phone_number_search: Mapped[Optional[str]] = mapped_column(
        String(HASH_LENGTH), index=True
    )
    phone_number_key_id: Mapped[Optional[str]] = mapped_column(
        String(KEY_ID_LENGTH), index=True
    )

    national_id_number: Mapped[Optional[str]] = mapped_column(Text)
    national_id_number_search: Mapped[Optional[str]] = mapped_column(String(HASH_LENGTH))
    national_id_number_key_id: Mapped[Optional[str]] = mapped_column(
        String(KEY_ID_LENGTH), index=True
    )


class Message(Base, TimestampMixin):
    """Chat message with an encrypted body."""

    __tablename__ = "messages"

    id: Mapped[UUIDPrimaryKey]
    sender_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)

    message_content: Mapped[Optional[str]] = mapped_column(Text)
    message_content_search: Mapped[Optional[str]] = mapped_column(
        String(HASH_LENGTH), index=True
    )
    message_content_key_id: Mapped[Optional[str]] = mapped_column(
        String(KEY_ID_LENGTH), index=True
    )


class Document(Base, TimestampMixin):
    """Uploaded document; the body is stored as an encrypted file payload."""

    __tablename__ = "documents"

    id: Mapped[UUIDPrimaryKey]
    owner_id: Mapped[Optional[str]] = mapped_column(String(36), index=True)

    document_content: Mapped[Optional[str]] = mapped_column(Text)
    document_content_search: Mapped[Optional[str]] = mapped_column(String(HASH_LENGTH))
    document_content_key_id: Mapped[Optional[str]] = mapped_column(
        String(KEY_ID_LENGTH), index=True
    )


ENTITY_MODELS: dict[str, type[Base]] = {
    "user": User,
    "message": Message,
    "document": Document,
}
