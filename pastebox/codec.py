"""
Metadata codec.

Uploader, counter and system records are stored next to the content as
compact JSON envelopes. Encoding is deterministic (fixed field order, absent
fields omitted). Decoding tolerates unknown or missing optional fields but
treats anything unparseable as a server-side fault.
"""
import logging
from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from pastebox.errors import MetadataDecodeError

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)


def encode_metadata(record: BaseModel) -> str:
    """Serialize a metadata record to its JSON envelope."""
    return record.model_dump_json(by_alias=True, exclude_none=True)


def decode_metadata(
    model: Type[RecordT],
    raw: Optional[Union[str, bytes]],
) -> RecordT:
    """
    Deserialize a JSON envelope into a metadata record.

    Args:
        model: Record class to decode into
        raw: Envelope text as read from the store

    Returns:
        The decoded record, with defaults for absent fields

    Raises:
        MetadataDecodeError: If the envelope is missing or malformed
    """
    if raw is None:
        raise MetadataDecodeError(f"{model.__name__} envelope is missing")
    try:
        return model.model_validate_json(raw)
    except ValidationError as e:
        logger.error(f"Malformed {model.__name__} envelope: {e}")
        raise MetadataDecodeError(f"{model.__name__} envelope is malformed") from e
