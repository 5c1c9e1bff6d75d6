import os

from sqlalchemy.orm import sessionmaker

from asset_control.db.engine import build_engine


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


ASSET_CONTROL_DB_URL = _require_env("ASSET_CONTROL_DB_URL")

engine_asset = build_engine(ASSET_CONTROL_DB_URL)

SessionLocalAsset = sessionmaker(
    bind=engine_asset,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
