"""
ServiceType model - a purchasable service category.

Pricing fields are read at request-creation time and frozen onto the
request; editing them never changes the price of existing requests.

Service types are soft-deleted (deleted_at) so that requests keep a valid
reference after an admin removes the service from the catalog.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String, Text

from marketplace.db_base import Base
from marketplace.models.base import JSONType, TimestampMixin


class ServiceType(Base, TimestampMixin):
    __tablename__ = "service_types"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    name_i18n = Column(JSONType, nullable=True, comment="Localized names, opaque to the backend")
    description_i18n = Column(JSONType, nullable=True)
    icon = Column(String(255), nullable=True)

    # Pricing
    credit_cost = Column(Integer, nullable=False, default=1, comment="Base credit cost")
    max_free_revisions = Column(Integer, nullable=False, default=3)
    paid_revision_cost = Column(Integer, nullable=False, default=1)
    reset_free_revisions_on_paid = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="A paid revision restores the full free-revision allowance"
    )
    priority_cost_low = Column(Integer, nullable=False, default=0)
    priority_cost_medium = Column(Integer, nullable=False, default=1)
    priority_cost_high = Column(Integer, nullable=False, default=2)

    # Ordered list of attribute definitions (see marketplace.pricing.attributes)
    attributes = Column(JSONType, nullable=False, default=list)

    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("credit_cost >= 1", name="ck_service_types_credit_cost"),
        CheckConstraint("max_free_revisions >= 0", name="ck_service_types_max_free_revisions"),
        CheckConstraint("paid_revision_cost >= 1", name="ck_service_types_paid_revision_cost"),
        CheckConstraint(
            "priority_cost_low >= 0 AND priority_cost_medium >= 0 AND priority_cost_high >= 0",
            name="ck_service_types_priority_costs",
        ),
    )

    def __repr__(self) -> str:
        return f"<ServiceType(id={self.id}, name={self.name}, credit_cost={self.credit_cost})>"

    @property
    def is_available(self) -> bool:
        """Orderable: active and not soft-deleted."""
        return bool(self.is_active) and self.deleted_at is None

    @property
    def attribute_definitions(self) -> List[Dict[str, Any]]:
        return list(self.attributes or [])

    def priority_costs(self) -> Dict[str, int]:
        return {
            "low": self.priority_cost_low or 0,
            "medium": self.priority_cost_medium or 0,
            "high": self.priority_cost_high or 0,
        }

    def soft_delete(self) -> None:
        self.deleted_at = datetime.now(timezone.utc)
        self.is_active = False
