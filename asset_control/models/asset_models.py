from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from asset_control.db.base import Base


class AssetStatus:
    AVAILABLE = "available"
    DEPLOYED = "deployed"
    PENDING = "pending"
    OVERDUE = "overdue"
    ARCHIVED = "archived"

    ALL = {AVAILABLE, DEPLOYED, PENDING, OVERDUE, ARCHIVED}
    CHECKED_OUT = (DEPLOYED, OVERDUE)


class PoolKind:
    IT_EQUIPMENT = "it_equipment"
    CONSUMABLE = "consumable"
    LICENSE = "license"

    ALL = {IT_EQUIPMENT, CONSUMABLE, LICENSE}


class AssignmentStatus:
    ASSIGNED = "assigned"
    RETURNED = "returned"


class Asset(Base):
    __tablename__ = "Assets"

    AssetID = Column(Integer, primary_key=True)
    AssetTag = Column(String(100), nullable=False, unique=True)
    Name = Column(String(255), nullable=False)
    SerialNumber = Column(String(255))
    Category = Column(String(100))
    Status = Column(String(20), nullable=False, default=AssetStatus.AVAILABLE)
    AssignedTo = Column(Integer)
    CheckoutDate = Column(Date)
    ExpectedCheckinDate = Column(Date)
    IdentityTag = Column(String(100))
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())


class ResourcePool(Base):
    __tablename__ = "ResourcePools"
    __table_args__ = (
        CheckConstraint('"AssignedQuantity" >= 0', name="ck_pool_assigned_non_negative"),
        CheckConstraint('"AssignedQuantity" <= "TotalQuantity"', name="ck_pool_within_capacity"),
    )

    PoolID = Column(Integer, primary_key=True)
    Name = Column(String(255), nullable=False)
    Kind = Column(String(40), nullable=False)
    TotalQuantity = Column(Integer, nullable=False, default=0)
    AssignedQuantity = Column(Integer, nullable=False, default=0)
    CreatedAt = Column(DateTime, server_default=func.now())
    UpdatedAt = Column(DateTime, server_default=func.now())

    Assignments = relationship("PoolAssignment", back_populates="Pool")


class PoolAssignment(Base):
    __tablename__ = "PoolAssignments"

    AssignmentID = Column(Integer, primary_key=True)
    PoolID = Column(Integer, ForeignKey("ResourcePools.PoolID"), nullable=False)
    AssignedTo = Column(String(255), nullable=False)
    SerialNumber = Column(String(255))
    IdentityTag = Column(String(100))
    Quantity = Column(Integer, nullable=False, default=1)
    AssignedDate = Column(DateTime, nullable=False)
    ReturnedDate = Column(DateTime)
    Status = Column(String(20), nullable=False, default=AssignmentStatus.ASSIGNED)
    Notes = Column(String(1000))

    Pool = relationship("ResourcePool", back_populates="Assignments")


class Activity(Base):
    __tablename__ = "Activities"

    ActivityID = Column(Integer, primary_key=True)
    Action = Column(String(50), nullable=False)
    ItemType = Column(String(50), nullable=False)
    ItemID = Column(Integer, nullable=False)
    # Plain integer, not a foreign key: rows must outlive the principal they name.
    UserID = Column(Integer)
    Timestamp = Column(DateTime, nullable=False)
    Notes = Column(String(2000))
