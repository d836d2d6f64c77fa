"""Budget policy for instant-win prize pools."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Iterable, Mapping, Optional

from ..config import Settings, settings as default_settings
from ..errors import InvalidPolicyError
from ..models.instant_win import PRIZE_TYPES


def _decimal(value: Any, name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except Exception as exc:
        raise InvalidPolicyError(f"{name} must be numeric, got {value!r}") from exc


def display_amount(value: Decimal) -> str:
    """Render ``value`` the way prize names show it: ``2`` or ``2.50``."""

    if value == value.to_integral_value():
        return str(int(value))
    return f"{value:.2f}"


@dataclass(frozen=True)
class PrizeTier:
    """One band of the instant-win budget.

    Attributes
    ----------
    name : str
        Label appended to the prize value when naming the generated prize.
    percent : Decimal
        Share of the instant budget for this tier, in percent (0-100).
    unit_value : Decimal
        Value paid per win.
    prize_type : str
        ``"cash"`` or ``"credit"``.
    count : Optional[int]
        Explicit number of wins; overrides the budget calculation when set.
    """

    name: str
    percent: Decimal
    unit_value: Decimal
    prize_type: str
    count: Optional[int] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PrizeTier":
        """Build a tier from a plain mapping such as a decoded JSON body."""

        count = data.get("count")
        return cls(
            name=str(data["name"]),
            percent=_decimal(data.get("percent", 0), "percent"),
            unit_value=_decimal(data["unit_value"], "unit_value"),
            prize_type=str(data["prize_type"]),
            count=int(count) if count is not None else None,
        )

    @property
    def prize_name(self) -> str:
        return f"£{display_amount(self.unit_value)} {self.name}"


@dataclass(frozen=True)
class PlannedPrize:
    """A prize the generator will create, with its number of wins."""

    name: str
    prize_type: str
    value: Decimal
    count: int


@dataclass(frozen=True)
class PrizePoolPolicy:
    """Return-to-player policy for a competition's instant wins.

    ``target_payout_ratio`` is the share of gross sales paid back as prizes;
    ``instant_share`` is the part of that payout reserved for instant wins
    rather than the end draw.
    """

    target_payout_ratio: Decimal
    instant_share: Decimal
    tiers: tuple[PrizeTier, ...]

    @classmethod
    def build(
        cls,
        target_payout_ratio: Any,
        instant_share: Any,
        tiers: Iterable[PrizeTier | Mapping[str, Any]],
    ) -> "PrizePoolPolicy":
        return cls(
            target_payout_ratio=_decimal(target_payout_ratio, "target_payout_ratio"),
            instant_share=_decimal(instant_share, "instant_share"),
            tiers=tuple(
                t if isinstance(t, PrizeTier) else PrizeTier.from_mapping(t)
                for t in tiers
            ),
        )

    def validate(self, settings: Optional[Settings] = None) -> None:
        """Raise :class:`InvalidPolicyError` when the policy is out of bounds."""

        cfg = settings or default_settings
        if not cfg.PAYOUT_RATIO_MIN <= self.target_payout_ratio <= cfg.PAYOUT_RATIO_MAX:
            raise InvalidPolicyError(
                f"Payout ratio must be between {cfg.PAYOUT_RATIO_MIN:.0%} "
                f"and {cfg.PAYOUT_RATIO_MAX:.0%}"
            )
        if not cfg.INSTANT_SHARE_MIN <= self.instant_share <= cfg.INSTANT_SHARE_MAX:
            raise InvalidPolicyError(
                f"Instant share must be between {cfg.INSTANT_SHARE_MIN:.0%} "
                f"and {cfg.INSTANT_SHARE_MAX:.0%}"
            )
        if not self.tiers:
            raise InvalidPolicyError("At least one prize tier is required")
        for tier in self.tiers:
            if tier.prize_type not in PRIZE_TYPES:
                raise InvalidPolicyError(
                    f"Tier '{tier.name}' has unknown prize type '{tier.prize_type}'"
                )
            if tier.unit_value <= 0:
                raise InvalidPolicyError(f"Tier '{tier.name}' needs a positive unit value")
            if not Decimal(0) <= tier.percent <= Decimal(100):
                raise InvalidPolicyError(
                    f"Tier '{tier.name}' percent must be between 0 and 100"
                )
            if tier.count is not None and tier.count < 0:
                raise InvalidPolicyError(f"Tier '{tier.name}' count must not be negative")

    def total_budget(self, max_tickets: int, ticket_price: Decimal) -> Decimal:
        return Decimal(max_tickets) * Decimal(ticket_price) * self.target_payout_ratio

    def instant_budget(self, max_tickets: int, ticket_price: Decimal) -> Decimal:
        return self.total_budget(max_tickets, ticket_price) * self.instant_share

    def plan(self, max_tickets: int, ticket_price: Decimal) -> list[PlannedPrize]:
        """Return the prizes implied by this policy for a competition.

        Per tier ``count = floor(instant_budget * percent / 100 / unit_value)``,
        at least one when the tier's budget is positive. Tiers ending up with
        zero wins are dropped.
        """

        instant = self.instant_budget(max_tickets, ticket_price)
        planned: list[PlannedPrize] = []
        for tier in self.tiers:
            if tier.count is not None and tier.count > 0:
                count = tier.count
            else:
                tier_budget = instant * tier.percent / Decimal(100)
                if tier_budget > 0:
                    count = max(
                        1,
                        int((tier_budget / tier.unit_value).to_integral_value(ROUND_FLOOR)),
                    )
                else:
                    count = 0
            if count > 0:
                planned.append(
                    PlannedPrize(
                        name=tier.prize_name,
                        prize_type=tier.prize_type,
                        value=tier.unit_value,
                        count=count,
                    )
                )
        return planned


__all__ = ["PlannedPrize", "PrizePoolPolicy", "PrizeTier", "display_amount"]
