"""
Slot number generation.

Two strategies on purpose:
  - single creates draw a random SLOT-<3 digits> number and re-draw on
    collision, giving up after SLOT_NUMBER_MAX_ATTEMPTS;
  - bulk creates hand out predictable <prefix>-<00001..> numbers, skipping
    the ones present in a snapshot taken once up front. The sequence has no
    upper bound, so a densely populated prefix costs a long scan before it
    finds free numbers.
"""
from __future__ import annotations

import logging
import os
import random
from typing import Iterable, Iterator, Set

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import models
from ..errors import GenerationExhausted

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "SLOT"
SLOT_NUMBER_MAX_ATTEMPTS = int(os.getenv("SLOT_NUMBER_MAX_ATTEMPTS", "10"))
BATCH_PAD_WIDTH = 5


def slot_number_exists(db: Session, slot_number: str) -> bool:
    return db.execute(
        select(models.ParkingSlot.slot_id).where(models.ParkingSlot.slot_number == slot_number).limit(1)
    ).first() is not None


def generate_unique(
    db: Session,
    prefix: str = DEFAULT_PREFIX,
    rng=random,
    max_attempts: int = SLOT_NUMBER_MAX_ATTEMPTS,
) -> str:
    for attempt in range(1, max_attempts + 1):
        candidate = f"{prefix}-{rng.randint(100, 999)}"
        if not slot_number_exists(db, candidate):
            return candidate
        logger.debug("[SLOTS] %s taken (attempt %d/%d)", candidate, attempt, max_attempts)

    logger.warning("[SLOTS] no free %s-### number after %d attempts", prefix, max_attempts)
    raise GenerationExhausted(
        message=f"failed to generate a unique slot number after {max_attempts} attempts"
    )


def existing_numbers(db: Session, prefix: str) -> Set[str]:
    rows = db.execute(
        select(models.ParkingSlot.slot_number).where(models.ParkingSlot.slot_number.startswith(prefix))
    ).scalars().all()
    return set(rows)


class SequentialNumbers:
    """Yields <prefix>-<seq> numbers not in `taken`, recording each one it hands out."""

    def __init__(self, prefix: str, taken: Iterable[str] = (), width: int = BATCH_PAD_WIDTH) -> None:
        self.prefix = prefix
        self.width = width
        self.taken: Set[str] = set(taken)
        self.sequence = 0

    def __iter__(self) -> Iterator[str]:
        return self

    def __next__(self) -> str:
        while True:
            self.sequence += 1
            candidate = f"{self.prefix}-{self.sequence:0{self.width}d}"
            if candidate not in self.taken:
                self.taken.add(candidate)
                return candidate


def generate_batch(db: Session, prefix: str, count: int) -> list[str]:
    numbers = SequentialNumbers(prefix, existing_numbers(db, prefix))
    return [next(numbers) for _ in range(count)]


def is_slot_number_collision(exc: BaseException) -> bool:
    """True when `exc` is the store rejecting a duplicate slot_number."""
    if not isinstance(exc, IntegrityError):
        return False
    msg = str(exc.orig if exc.orig is not None else exc).lower()
    return "slot_number" in msg and ("unique" in msg or "duplicate" in msg)
