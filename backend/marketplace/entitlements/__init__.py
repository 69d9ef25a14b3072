"""
Package-service entitlement enforcement.

This module provides:
- check_access / require_access: gate request creation on the client's plan
- get_live_subscription: newest active, unexpired subscription
- Redis-backed per-package cache with explicit invalidation
"""

from marketplace.entitlements.models import AccessResult, PackageEntitlement
from marketplace.entitlements.service import (
    check_access,
    get_live_subscription,
    invalidate_package_entitlement,
    load_package_entitlement,
    require_access,
)

__all__ = [
    "AccessResult",
    "PackageEntitlement",
    "check_access",
    "get_live_subscription",
    "invalidate_package_entitlement",
    "load_package_entitlement",
    "require_access",
]
