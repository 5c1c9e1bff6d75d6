from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from asset_control.db.base import Base


class Role(Base):
    __tablename__ = "Roles"

    RoleID = Column(Integer, primary_key=True)
    RoleName = Column(String(100), nullable=False, unique=True)
    Description = Column(String(500))
    Permissions = Column(String, nullable=False, default="{}")
    IsSystem = Column(Boolean, default=False)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Principals = relationship("Principal", back_populates="Role")


class Principal(Base):
    __tablename__ = "Users"

    UserID = Column(Integer, primary_key=True)
    Username = Column(String(100), nullable=False, unique=True)
    FirstName = Column(String(100))
    LastName = Column(String(100))
    Email = Column(String(255))
    IsAdmin = Column(Boolean, nullable=False, default=False)
    RoleID = Column(Integer, ForeignKey("Roles.RoleID"))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Role = relationship("Role", back_populates="Principals")

    @property
    def DisplayName(self) -> str:
        full_name = " ".join(part for part in (self.FirstName, self.LastName) if part)
        return full_name or self.Username
