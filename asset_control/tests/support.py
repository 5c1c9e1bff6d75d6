import os
import unittest

os.environ.setdefault("ASSET_CONTROL_DB_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("SESSION_SIGNING_SECRET", "x" * 48)

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

import asset_control.models  # noqa: F401  (registers every table on Base.metadata)
from asset_control.db.base import Base
from asset_control.db.engine import build_engine
from asset_control.models import Asset, AssetStatus, AssignmentStatus, PoolAssignment, Principal, ResourcePool
from asset_control.services.asset_ledger_service import SYSTEM_PRINCIPAL_ID


class DatabaseTestCase(unittest.TestCase):
    """Fresh in-memory database per test with the system account pre-created."""

    def setUp(self):
        self.engine = build_engine("sqlite+pysqlite:///:memory:")
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)
        self.db = self.SessionLocal()
        self.db.add(Principal(UserID=SYSTEM_PRINCIPAL_ID, Username="system", IsAdmin=True))
        self.db.commit()

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def add_principal(self, username, *, user_id=None, is_admin=False, role_id=None, first_name=None, last_name=None):
        principal = Principal(
            UserID=user_id,
            Username=username,
            IsAdmin=is_admin,
            RoleID=role_id,
            FirstName=first_name,
            LastName=last_name,
        )
        self.db.add(principal)
        self.db.commit()
        return principal

    def add_asset(self, tag, *, status=AssetStatus.AVAILABLE, name=None):
        asset = Asset(AssetTag=tag, Name=name or f"Laptop {tag}", Status=status)
        self.db.add(asset)
        self.db.commit()
        return asset

    def assert_ledger_consistent(self):
        for asset in self.db.execute(select(Asset)).scalars().all():
            self.db.refresh(asset)
            self.assertEqual(
                asset.AssignedTo is not None,
                asset.Status in AssetStatus.CHECKED_OUT,
                f"asset {asset.AssetTag} status={asset.Status} assignedTo={asset.AssignedTo}",
            )
        for pool in self.db.execute(select(ResourcePool)).scalars().all():
            self.db.refresh(pool)
            self.assertGreaterEqual(pool.AssignedQuantity, 0)
            self.assertLessEqual(pool.AssignedQuantity, pool.TotalQuantity)
            active = self.db.execute(
                select(PoolAssignment.Quantity)
                .where(PoolAssignment.PoolID == pool.PoolID)
                .where(PoolAssignment.Status == AssignmentStatus.ASSIGNED)
            ).scalars().all()
            self.assertEqual(pool.AssignedQuantity, sum(active))
