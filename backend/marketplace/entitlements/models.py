from __future__ import annotations

from dataclasses import dataclass
from typing import FrozenSet, Literal, Optional

DenialCode = Literal["PRECONDITION_FAILED", "FORBIDDEN"]


@dataclass(frozen=True)
class PackageEntitlement:
    """The service set a package grants. Cached per package."""

    package_id: str
    support_all_services: bool
    service_type_ids: FrozenSet[str]

    def grants(self, service_type_id: str) -> bool:
        return self.support_all_services or service_type_id in self.service_type_ids


@dataclass(frozen=True)
class AccessResult:
    """Outcome of an entitlement check; denial_code set when denied."""

    allowed: bool
    subscription_id: Optional[str] = None
    package_id: Optional[str] = None
    denial_code: Optional[DenialCode] = None
    message: Optional[str] = None

    @classmethod
    def granted(cls, subscription_id: str, package_id: str) -> "AccessResult":
        return cls(allowed=True, subscription_id=subscription_id, package_id=package_id)

    @classmethod
    def no_subscription(cls) -> "AccessResult":
        return cls(
            allowed=False,
            denial_code="PRECONDITION_FAILED",
            message="No active subscription found. Please subscribe to a package.",
        )

    @classmethod
    def service_not_in_plan(cls, subscription_id: str, package_id: str) -> "AccessResult":
        return cls(
            allowed=False,
            subscription_id=subscription_id,
            package_id=package_id,
            denial_code="FORBIDDEN",
            message=(
                "Your current plan doesn't include this service. "
                "Please upgrade your package to request it."
            ),
        )
