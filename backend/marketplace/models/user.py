"""
User model.

Users are created by the (external) auth layer; this service only reads
role and provider skills.
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, Enum as SAEnum, ForeignKey, String, Table
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class UserRole(str, enum.Enum):
    CLIENT = "CLIENT"
    PROVIDER = "PROVIDER"
    SUPER_ADMIN = "SUPER_ADMIN"


# Service types a provider handles; used to route new-request notifications
provider_services = Table(
    "provider_services",
    Base.metadata,
    Column("user_id", String(255), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("service_type_id", String(255), ForeignKey("service_types.id", ondelete="CASCADE"), primary_key=True),
)


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Internal UUID primary key"
    )

    email = Column(String(255), nullable=False, unique=True, index=True)

    name = Column(String(255), nullable=True)

    role = Column(
        SAEnum(UserRole, name="user_role", create_constraint=True),
        nullable=False,
        default=UserRole.CLIENT,
        index=True,
    )

    is_active = Column(Boolean, nullable=False, default=True)

    service_types = relationship("ServiceType", secondary=provider_services, lazy="selectin")

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role.value})>"

    @property
    def is_provider(self) -> bool:
        return self.role == UserRole.PROVIDER
