from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Enum, Text
from sqlalchemy.orm import relationship
from datetime import datetime
import enum
from storefront.db.base_class import Base


class NotificationType(str, enum.Enum):
    ORDER_UPDATE = "ORDER_UPDATE"
    PRODUCT_ALERT = "PRODUCT_ALERT"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)  # NULL = system-wide

    type = Column(Enum(NotificationType), nullable=False)
    title = Column(String(200), nullable=False)  # i18n key
    message = Column(String(500), nullable=False)  # i18n key + "|"-separated params
    data = Column(Text, nullable=True)  # JSON

    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="notifications")
