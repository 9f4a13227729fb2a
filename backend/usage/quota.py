"""
Quota Evaluation — pure decision over a ledger snapshot and tenant limits.

Answers "can this tenant process another image / register another SKU now?".
No I/O happens here; ``check_tenant_quota`` in ``usage.service`` loads the
inputs fresh for every evaluation.

Decision rules (first match wins for ``status``):
  1. inactive        - tenant deactivated, everything denied
  2. quota_exceeded  - any of monthly/weekly/yearly usage >= its limit
  3. near_limit      - monthly usage >= near-limit ratio (80% by default) of the monthly limit
  4. ok

A zero limit counts as already reached, never as unlimited headroom.
"""

from dataclasses import asdict, dataclass
from typing import Any

NEAR_LIMIT_RATIO = 0.8

STATUS_INACTIVE = "inactive"
STATUS_QUOTA_EXCEEDED = "quota_exceeded"
STATUS_NEAR_LIMIT = "near_limit"
STATUS_OK = "ok"


@dataclass(frozen=True)
class TenantLimits:
    is_active: bool
    max_skus: int
    max_images_per_month: int
    max_images_per_week: int
    max_images_per_year: int

    @classmethod
    def from_tenant(cls, tenant) -> "TenantLimits":
        return cls(
            is_active=bool(tenant.is_active),
            max_skus=tenant.max_skus,
            max_images_per_month=tenant.max_images_per_month,
            max_images_per_week=tenant.max_images_per_week,
            max_images_per_year=tenant.max_images_per_year,
        )


@dataclass(frozen=True)
class LedgerSnapshot:
    """Images processed in each current quota period."""

    daily: int = 0
    weekly: int = 0
    monthly: int = 0
    yearly: int = 0


@dataclass(frozen=True)
class QuotaInfo:
    can_process: bool
    can_add_sku: bool
    monthly_usage: int
    monthly_limit: int
    weekly_usage: int
    weekly_limit: int
    yearly_usage: int
    yearly_limit: int
    sku_count: int
    sku_limit: int
    status: str

    @property
    def monthly_percentage(self) -> float:
        return usage_percentage(self.monthly_usage, self.monthly_limit)

    @property
    def sku_percentage(self) -> float:
        return usage_percentage(self.sku_count, self.sku_limit)

    def to_rpc(self) -> dict[str, Any]:
        """Camel-cased payload returned by the quota read RPC."""
        return {_camel(key): value for key, value in asdict(self).items()}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def usage_percentage(usage: int, limit: int) -> float:
    """Usage as a percentage of ``limit``. A non-positive limit reads as 100%."""
    if limit <= 0:
        return 100.0
    return usage / limit * 100


def is_at_limit(usage: int, limit: int) -> bool:
    return limit <= 0 or usage >= limit


def evaluate(
    limits: TenantLimits,
    snapshot: LedgerSnapshot,
    sku_count: int,
    near_limit_ratio: float = NEAR_LIMIT_RATIO,
) -> QuotaInfo:
    """Evaluate the quota rules for one tenant."""
    base = {
        "monthly_usage": snapshot.monthly,
        "monthly_limit": limits.max_images_per_month,
        "weekly_usage": snapshot.weekly,
        "weekly_limit": limits.max_images_per_week,
        "yearly_usage": snapshot.yearly,
        "yearly_limit": limits.max_images_per_year,
        "sku_count": sku_count,
        "sku_limit": limits.max_skus,
    }

    if not limits.is_active:
        return QuotaInfo(can_process=False, can_add_sku=False, status=STATUS_INACTIVE, **base)

    can_add_sku = sku_count < limits.max_skus

    exceeded = (
        is_at_limit(snapshot.monthly, limits.max_images_per_month)
        or is_at_limit(snapshot.weekly, limits.max_images_per_week)
        or is_at_limit(snapshot.yearly, limits.max_images_per_year)
    )
    if exceeded:
        return QuotaInfo(can_process=False, can_add_sku=can_add_sku, status=STATUS_QUOTA_EXCEEDED, **base)

    if snapshot.monthly >= limits.max_images_per_month * near_limit_ratio:
        return QuotaInfo(can_process=True, can_add_sku=can_add_sku, status=STATUS_NEAR_LIMIT, **base)

    return QuotaInfo(can_process=True, can_add_sku=can_add_sku, status=STATUS_OK, **base)
