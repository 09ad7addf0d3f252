"""
Cost Catalog

Static service pricing and quota limits. Built once at startup and shared
read-only across every request, so no locking is needed.

Sources, in priority order:
1. An explicit mapping passed to CostCatalog(...)
2. A JSON file named by CREDIT_CATALOG_PATH
3. DEFAULT_COSTS / DEFAULT_LIMITS below
"""

import json
import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import structlog

from .account import AccountRole
from .errors import CatalogConfigError, UnknownServiceError

logger = structlog.get_logger()


# Credits charged per invocation
DEFAULT_COSTS = {
    "interview_analysis": 10,
    "audio_transcription": 5,
    "suggestion_generation": 3,
    "job_parsing": 2,
    "resume_parsing": 3,
    "email_parsing": 2,
}

DEFAULT_LIMITS = {
    "daily_limit": 200,
    "monthly_limit": 2000,
}

# Starting grant per role at provisioning
DEFAULT_STARTING_GRANTS = {
    AccountRole.USER: 2000,
    AccountRole.ADMIN: 10000,
}


@dataclass(frozen=True)
class QuotaLimits:
    """Per-window caps on credits spent."""
    daily_limit: int
    monthly_limit: int

    def __post_init__(self):
        for name in ("daily_limit", "monthly_limit"):
            value = getattr(self, name)
            if not _is_count(value):
                raise CatalogConfigError(f"{name} must be a non-negative integer, got {value!r}")


@dataclass(frozen=True)
class CostCatalog:
    """
    Immutable service_type -> credit cost table plus quota limits.

    Usage:
        catalog = CostCatalog.from_env()
        cost = catalog.cost_of("interview_analysis")
    """
    costs: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_COSTS))
    limits: QuotaLimits = field(default_factory=lambda: QuotaLimits(**DEFAULT_LIMITS))
    starting_grants: Mapping[AccountRole, int] = field(
        default_factory=lambda: dict(DEFAULT_STARTING_GRANTS)
    )

    def __post_init__(self):
        for service_type, cost in self.costs.items():
            if not isinstance(service_type, str) or not service_type:
                raise CatalogConfigError(f"Invalid service type: {service_type!r}")
            if not _is_count(cost):
                raise CatalogConfigError(f"Cost for {service_type} must be a non-negative integer, got {cost!r}")
        for role, amount in self.starting_grants.items():
            if not _is_count(amount):
                raise CatalogConfigError(f"Starting grant for {role} must be a non-negative integer")

        # Freeze the mappings so nothing downstream can mutate shared pricing
        object.__setattr__(self, "costs", MappingProxyType(dict(self.costs)))
        object.__setattr__(self, "starting_grants", MappingProxyType(dict(self.starting_grants)))

    @property
    def daily_limit(self) -> int:
        return self.limits.daily_limit

    @property
    def monthly_limit(self) -> int:
        return self.limits.monthly_limit

    @property
    def service_types(self):
        return sorted(self.costs)

    def cost_of(self, service_type: str) -> int:
        """Credit cost of one invocation. Raises UnknownServiceError."""
        try:
            return self.costs[service_type]
        except (KeyError, TypeError):
            raise UnknownServiceError(service_type)

    def starting_grant(self, role: AccountRole) -> int:
        return self.starting_grants.get(role, self.starting_grants.get(AccountRole.USER, 0))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "costs": dict(self.costs),
            "daily_limit": self.daily_limit,
            "monthly_limit": self.monthly_limit,
            "starting_grants": {role.value: amount for role, amount in self.starting_grants.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostCatalog":
        """
        Build from a plain mapping.

        {
          "costs": {"interview_analysis": 10, ...},
          "daily_limit": 200,
          "monthly_limit": 2000,
          "starting_grants": {"USER": 2000, "ADMIN": 10000}
        }

        Missing sections fall back to the defaults.
        """
        if not isinstance(data, dict):
            raise CatalogConfigError("Catalog must be a JSON object")

        costs = data.get("costs", DEFAULT_COSTS)
        if not isinstance(costs, dict):
            raise CatalogConfigError("'costs' must be an object")

        limits = QuotaLimits(
            daily_limit=data.get("daily_limit", DEFAULT_LIMITS["daily_limit"]),
            monthly_limit=data.get("monthly_limit", DEFAULT_LIMITS["monthly_limit"]),
        )

        grants = dict(DEFAULT_STARTING_GRANTS)
        for role_name, amount in data.get("starting_grants", {}).items():
            try:
                grants[AccountRole[role_name.upper()]] = amount
            except KeyError:
                raise CatalogConfigError(f"Unknown role in starting_grants: {role_name}")

        return cls(costs=costs, limits=limits, starting_grants=grants)

    @classmethod
    def from_file(cls, path: str) -> "CostCatalog":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise CatalogConfigError(f"Cannot load cost catalog from {path}: {e}")

        catalog = cls.from_dict(data)
        logger.info("cost_catalog_loaded", path=path, services=len(catalog.costs))
        return catalog

    @classmethod
    def from_env(cls) -> "CostCatalog":
        """Load from CREDIT_CATALOG_PATH if set, else the defaults."""
        path: Optional[str] = os.environ.get("CREDIT_CATALOG_PATH")
        if path:
            return cls.from_file(path)
        return cls()


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0
