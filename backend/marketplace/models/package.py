"""
Package model - a credit bundle clients subscribe to.

Exactly one package has is_free_package=True. It is granted at registration,
cannot be deleted and cannot be subscribed to through the paid flow.
"""

import uuid
from typing import Set

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Table, Text
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import JSONType, TimestampMixin


package_services = Table(
    "package_services",
    Base.metadata,
    Column("package_id", String(255), ForeignKey("packages.id", ondelete="CASCADE"), primary_key=True),
    Column("service_type_id", String(255), ForeignKey("service_types.id", ondelete="CASCADE"), primary_key=True),
)


class Package(Base, TimestampMixin):
    __tablename__ = "packages"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    credits = Column(Integer, nullable=False, comment="Credits granted on activation")
    duration_days = Column(Integer, nullable=False, default=30)
    features = Column(JSONType, nullable=False, default=list)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    is_free_package = Column(Boolean, nullable=False, default=False, index=True)
    support_all_services = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="Grants every service type regardless of package_services"
    )

    service_types = relationship("ServiceType", secondary=package_services, lazy="selectin")

    def __repr__(self) -> str:
        return f"<Package(id={self.id}, name={self.name}, credits={self.credits})>"

    def service_type_ids(self) -> Set[str]:
        return {st.id for st in self.service_types}
