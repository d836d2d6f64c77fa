"""Utility helpers for the models package."""

from __future__ import annotations

import secrets
import string
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

BASE36_ALPHABET = string.digits + string.ascii_lowercase

PENNY = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce ``value`` to a two-decimal ``Decimal`` amount."""

    if isinstance(value, float):
        # go through str() so 0.1 stays 0.1 rather than its binary expansion
        value = str(value)
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)


def generate_draw_id(
    session: Optional[Session] = None,
    length: int = 9,
    max_attempts: int = 32,
) -> str:
    """Return a unique, human-referenceable draw identifier.

    The value looks like ``draw-<epoch millis>-<random base36>``. When a
    session is provided, the helper retries if the generated value is already
    stored (or pending) in ``DrawRecord.draw_id``.
    """

    from .draw import DrawRecord

    attempts = 0
    while attempts < max_attempts:
        suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(length))
        candidate = f"draw-{int(time.time() * 1000)}-{suffix}"

        if session is not None:
            pending = any(
                isinstance(obj, DrawRecord) and obj.draw_id == candidate
                for obj in session.new
            )
            exists = pending or session.scalar(
                select(DrawRecord.id).where(DrawRecord.draw_id == candidate)
            ) is not None
            if exists:
                attempts += 1
                continue

        return candidate

    raise RuntimeError("Unable to generate a unique draw id after multiple attempts")
