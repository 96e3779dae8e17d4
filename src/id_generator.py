from __future__ import annotations

import itertools
import time
import uuid
from typing import Optional


class ClientOrderIdGenerator:
    """Generate client order identifiers that are unique per submission.

    Each id combines a per-process sequence number with a random
    ``uuid.uuid4`` suffix.  The sequence keeps ids of one session ordered in
    logs; the random part keeps them unique across restarts without any local
    state.  Gateways forward the id as the exchange's external order id so a
    retried request is recognised rather than filled twice.
    """

    def __init__(self, prefix: str = "scalp", start: Optional[int] = None):
        self.prefix = prefix.rstrip("_")
        self._seq = itertools.count(start if start is not None else int(time.time()))

    def next_id(self, side: Optional[str] = None) -> str:
        """Return a new unique identifier string."""
        return uuid_external_id(self.prefix, side, next(self._seq))


def uuid_external_id(
    prefix: str = "", side: Optional[str] = None, idx: Optional[int] = None
) -> str:
    """Return a unique identifier based on ``uuid.uuid4``."""
    parts = [prefix.rstrip("_")]
    if side:
        parts.append(side.lower())
    if idx is not None:
        parts.append(str(idx))
    parts.append(uuid.uuid4().hex[:16])
    return "_".join(filter(None, parts))
