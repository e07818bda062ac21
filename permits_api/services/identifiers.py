from __future__ import annotations

import logging
import random
from datetime import datetime, timezone
from typing import Callable, Optional

from .metrics import PERMIT_ID_COLLISIONS_COUNTER

logger = logging.getLogger(__name__)

DEFAULT_JURISDICTION = "MTA"
DEFAULT_MAX_ATTEMPTS = 5


class IdentifierAllocationError(RuntimeError):
    pass


def format_permit_id(jurisdiction: str, year: int, suffix: int) -> str:
    return f"WP-{jurisdiction}-{year}-{suffix:06d}"


class PermitIdAllocator:
    """Draws WP-<JURISDICTION>-<YEAR>-<6 digits> ids until one is unused.

    ``exists`` is the collision check and ``rng`` the random source, both
    injectable so tests can force collisions.
    """

    def __init__(
        self,
        exists: Callable[[str], bool],
        *,
        jurisdiction: str = DEFAULT_JURISDICTION,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.exists = exists
        self.jurisdiction = jurisdiction
        self.max_attempts = max_attempts
        self.rng = rng or random.SystemRandom()
        self.clock = clock

    def candidate(self) -> str:
        return format_permit_id(self.jurisdiction, self.clock().year, self.rng.randint(100000, 999999))

    def allocate(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.candidate()
            if not self.exists(candidate):
                return candidate
            PERMIT_ID_COLLISIONS_COUNTER.inc()
            logger.info("permit_id_collision candidate=%s attempt=%s", candidate, attempt)

        logger.error("permit_id_allocation_exhausted attempts=%s", self.max_attempts)
        raise IdentifierAllocationError("Failed to generate unique Work Permit ID")
