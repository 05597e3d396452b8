"""Counter key digests.

Identity values and the current window index are folded into one
SHA-512 digest, base64 encoded without padding. Keys have a fixed length
however long the user agent is, and no raw client data reaches the store.
"""

import base64
import hashlib
import time
from collections.abc import Sequence

from throttle.constants import (
    ABSENT_VALUE_PLACEHOLDER,
    VALUE_SEPARATOR,
    WINDOW_SEPARATOR,
)
from throttle.core.rate_limit.keys import IdentityAttribute


def window_index(period: int, now: float | None = None) -> int:
    """Return the index of the fixed window ``now`` falls into.

    Args:
        period: Window length in seconds
        now: Unix timestamp (default: current time)

    Returns:
        ``floor(now / period)``

    Raises:
        ValueError: If period is not positive
    """
    if period <= 0:
        raise ValueError(f"period must be positive, got {period}")
    if now is None:
        now = time.time()
    return int(now // period)


def window_digest(
    attributes: Sequence[IdentityAttribute],
    period: int,
    now: float | None = None,
) -> str:
    """Build the counter key for an identity in the current window.

    Only values take part in the digest, in list order; attribute names
    order the values but are not hashed. Absent values are replaced by a
    fixed placeholder.

    Args:
        attributes: Ordered identity attributes
        period: Window length in seconds
        now: Unix timestamp (default: current time)

    Returns:
        86-character base64 SHA-512 digest

    Example:
        ``[("prefix", "app"), ("remote_addr", None)]`` with period 60 at
        time 0 hashes the string ``"app:* * *#0"``.
    """
    values = [
        ABSENT_VALUE_PLACEHOLDER if value is None else value
        for _name, value in attributes
    ]
    joined = VALUE_SEPARATOR.join(values)
    key_string = f"{joined}{WINDOW_SEPARATOR}{window_index(period, now)}"

    digest = hashlib.sha512(key_string.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii").rstrip("=")
