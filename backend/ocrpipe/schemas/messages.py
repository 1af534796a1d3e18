"""
Pipeline Message Envelope

One envelope type travels both pipelines:

  ingest  (documents → documents.ocr)  content is empty, storage_path is the
                                       uploaded object key
  result  (ocr → ocr.results)          content holds the extracted text

Wire format: JSON object, camelCase field names, UTF-8, published with
content-type application/json. Unknown fields are ignored on decode so an
older consumer can read a newer producer's messages.

A message is immutable once built. Deriving the result message from the
ingest message goes through with_content(), which returns a new instance.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ocrpipe.core.exceptions import MessageDecodeError

# Transport header values
MESSAGE_TYPE   = "DocumentMessage"
SCHEMA_VERSION = 1

CONTENT_TYPE_JSON = "application/json"


class DocumentMessage(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    document_id:     UUID
    file_name:       str
    content_type:    str
    uploaded_at_utc: datetime
    storage_path:    str
    content:         str        = ""
    summary:         str | None = None
    correlation_id:  str        = ""
    tenant_id:       str | None = None
    version:         int        = Field(default=SCHEMA_VERSION, ge=1)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        *,
        document_id:    UUID,
        file_name:      str,
        content_type:   str,
        storage_path:   str,
        tenant_id:      str | None = None,
        correlation_id: str | None = None,
        uploaded_at:    datetime | None = None,
    ) -> "DocumentMessage":
        """Build a fresh ingest message; a correlation id is generated when absent."""
        return cls(
            document_id=document_id,
            file_name=file_name,
            content_type=content_type,
            uploaded_at_utc=uploaded_at or datetime.now(timezone.utc),
            storage_path=storage_path,
            correlation_id=correlation_id or uuid.uuid4().hex,
            tenant_id=tenant_id,
        )

    def with_content(self, content: str) -> "DocumentMessage":
        return self.model_copy(update={"content": content})

    # ------------------------------------------------------------------
    # Wire codec
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_body(cls, body: bytes | str) -> "DocumentMessage":
        """
        Decode a delivery body.

        Raises MessageDecodeError for malformed JSON or a payload that does
        not satisfy the envelope schema.
        """
        try:
            return cls.model_validate_json(body)
        except ValidationError as exc:
            raise MessageDecodeError(f"invalid document message: {exc}") from exc
