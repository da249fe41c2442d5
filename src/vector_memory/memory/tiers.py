"""
Service tiers and quota checks.

The limit table is static configuration exposed as a read-only mapping.
``check_limits`` takes the table as a parameter so checks can be exercised
against any table in isolation.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Mapping, Optional

UNLIMITED = -1
DEFAULT_TIER = "free"


@dataclass(frozen=True)
class TierLimits:
    agents: int
    sessions_per_month: int
    tokens_per_month: int
    short_term_retention_days: int
    long_term_memories: int


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        if self.reason is None:
            return {"allowed": self.allowed}
        return {"allowed": self.allowed, "reason": self.reason}


TIER_LIMITS: Mapping[str, TierLimits] = MappingProxyType({
    "free": TierLimits(
        agents=1,
        sessions_per_month=100,
        tokens_per_month=50_000,
        short_term_retention_days=1,
        long_term_memories=50,
    ),
    "starter": TierLimits(
        agents=5,
        sessions_per_month=1_000,
        tokens_per_month=500_000,
        short_term_retention_days=7,
        long_term_memories=500,
    ),
    "pro": TierLimits(
        agents=25,
        sessions_per_month=10_000,
        tokens_per_month=5_000_000,
        short_term_retention_days=30,
        long_term_memories=5_000,
    ),
    "enterprise": TierLimits(
        agents=UNLIMITED,
        sessions_per_month=UNLIMITED,
        tokens_per_month=UNLIMITED,
        short_term_retention_days=90,
        long_term_memories=UNLIMITED,
    ),
})

# usage field → (limit attribute, reason template); checked in this order
_CHECKS = (
    ("agents", "agents", "Agent limit reached ({limit})"),
    ("sessions", "sessions_per_month", "Monthly session limit reached ({limit})"),
    ("tokens", "tokens_per_month", "Monthly token limit reached ({limit})"),
    ("memories", "long_term_memories", "Long-term memory limit reached ({limit})"),
)


def get_tier_limits(
    tier: Optional[str],
    table: Mapping[str, TierLimits] = TIER_LIMITS,
) -> TierLimits:
    """Look up a tier's limits; unknown tiers get the most restrictive tier."""
    key = (tier or DEFAULT_TIER).lower()
    if key in table:
        return table[key]
    return table[DEFAULT_TIER]


def check_limits(
    tier: Optional[str],
    usage: Optional[Mapping[str, int]] = None,
    table: Mapping[str, TierLimits] = TIER_LIMITS,
) -> LimitCheck:
    """
    Check observed usage against a tier's quotas.

    Args:
        tier: Tier name, e.g. "free" or "pro".
        usage: Any of ``agents``, ``sessions``, ``tokens``, ``memories``.
            Absent fields count as zero.
        table: Limit table to check against.

    Returns a LimitCheck whose reason names the first exceeded quota.
    """
    limits = get_tier_limits(tier, table)
    usage = usage or {}
    for usage_field, limit_attr, template in _CHECKS:
        limit = getattr(limits, limit_attr)
        if limit == UNLIMITED or usage.get(usage_field) is None:
            continue
        if (usage.get(usage_field) or 0) >= limit:
            return LimitCheck(allowed=False, reason=template.format(limit=limit))
    return LimitCheck(allowed=True)


def short_term_expiry(
    tier: Optional[str],
    ttl_hours: float,
    now: datetime,
    table: Mapping[str, TierLimits] = TIER_LIMITS,
) -> datetime:
    """Expiry for a new short-term memory, capped at the tier's retention window."""
    retention_hours = get_tier_limits(tier, table).short_term_retention_days * 24
    return now + timedelta(hours=min(ttl_hours, retention_hours))
