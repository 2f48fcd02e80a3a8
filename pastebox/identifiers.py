"""
Paste identifier allocation.

Random ids are short alphanumeric strings. A collision is retried exactly once
with a timestamp-prefixed variant of the same candidate; explicit ids chosen by
the caller are never rewritten.
"""
import logging
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Callable, Optional

from pastebox.errors import ClientError, Conflict

logger = logging.getLogger(__name__)

ALPHABET = string.ascii_letters + string.digits
EXPLICIT_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def generate_id(length: int = 6) -> str:
    """Return a random id of `length` alphanumeric characters."""
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


def disambiguate(candidate: str, now: datetime) -> str:
    """Prefix a colliding id with a YYYYMMDDHHMMSS timestamp."""
    return now.strftime("%Y%m%d%H%M%S") + candidate


def validate_explicit_id(paste_id: str) -> str:
    if not EXPLICIT_ID_PATTERN.match(paste_id) or paste_id in (".", ".."):
        raise ClientError("Invalid paste ID")
    return paste_id


def allocate_id(
    insert: Callable[[str], bool],
    explicit_id: Optional[str] = None,
    extension: str = "",
    length: int = 6,
    now: Optional[datetime] = None,
) -> str:
    """
    Pick an id and insert the paste under it.

    Args:
        insert: Store callback; returns False when the id is already taken
        explicit_id: Caller-chosen id, used verbatim
        extension: Suffix appended to random ids (e.g. ".png")
        length: Length of the random part
        now: Clock used for the disambiguation prefix

    Returns:
        The id the paste was stored under

    Raises:
        Conflict: If the id (and, for random ids, its single retry) is taken
    """
    if explicit_id:
        if insert(explicit_id):
            return explicit_id
        raise Conflict()

    candidate = generate_id(length) + extension
    if insert(candidate):
        return candidate

    retry = disambiguate(candidate, now or datetime.now(timezone.utc))
    logger.warning(f"Id {candidate} collided, retrying as {retry}")
    if insert(retry):
        return retry

    logger.error(f"Id {retry} collided after retry, giving up")
    raise Conflict()
