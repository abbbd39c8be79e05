from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint
from sqlalchemy.orm import validates
from sqlalchemy.sql import func
from app.database import Base

APP_ROLES = ("user", "affiliate", "admin")

class UserRole(Base):
    __tablename__ = "user_roles"
    __table_args__ = (
        UniqueConstraint('user_id', 'role', name='uq_user_role'),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    role = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    @validates("role")
    def _check_role(self, key, value):
        if value not in APP_ROLES:
            raise ValueError(f"unknown role: {value}")
        return value
