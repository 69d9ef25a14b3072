"""Rating model - one client rating per completed request."""

import uuid

from sqlalchemy import CheckConstraint, Column, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from marketplace.db_base import Base
from marketplace.models.base import TimestampMixin


class Rating(Base, TimestampMixin):
    __tablename__ = "ratings"

    id = Column(String(255), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String(255), ForeignKey("requests.id", ondelete="CASCADE"), nullable=False, unique=True)
    client_id = Column(String(255), ForeignKey("users.id"), nullable=False)
    provider_id = Column(String(255), ForeignKey("users.id"), nullable=False, index=True)
    rating = Column(Integer, nullable=False)
    review_text = Column(Text, nullable=True)

    request = relationship("Request", back_populates="rating")

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_ratings_rating"),
    )
