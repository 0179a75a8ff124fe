import asyncio
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Ensure the service package is importable when running tests from the repo root
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from fg_dispatch import auth as auth_utils  # noqa: E402
from fg_dispatch import deps, models  # noqa: E402
from fg_dispatch.main import app  # noqa: E402


class Database:
    """Synchronous helpers over the per-test SQLite database."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def add(self, *objects):
        async def _add():
            async with self.session_factory() as session:
                session.add_all(objects)
                await session.commit()

        asyncio.run(_add())
        return objects[0] if len(objects) == 1 else objects

    def all(self, model, *criteria):
        async def _all():
            async with self.session_factory() as session:
                query = select(model)
                if criteria:
                    query = query.where(*criteria)
                result = await session.execute(query.order_by(model.id))
                return list(result.scalars().all())

        return asyncio.run(_all())

    def stock(self, product_name: str) -> models.ProductStock:
        (stock,) = self.all(models.ProductStock, models.ProductStock.product_name == product_name)
        return stock

    def add_product(
        self,
        product_name: str,
        *,
        units_per_carton: int,
        cartons: int = 0,
        pieces: int = 0,
        broken: int = 0,
        alert_threshold: int = 10,
    ) -> models.ProductStock:
        mapping = models.ProductMaterialMapping(product_name=product_name, units_per_carton=units_per_carton)
        stock = models.ProductStock(
            product_name=product_name,
            available_cartons=cartons,
            available_pieces=pieces,
            broken_carton_pieces=broken,
            units_per_carton=units_per_carton,
            alert_threshold=alert_threshold,
        )
        self.add(mapping, stock)
        return stock


@pytest.fixture()
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'fg.db'}", poolclass=NullPool)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(deps, "engine", engine)
    monkeypatch.setattr(deps, "SessionLocal", session_factory)
    asyncio.run(deps.init_models())
    yield Database(session_factory)
    asyncio.run(engine.dispose())


@pytest.fixture()
def admin(db: Database) -> models.User:
    return db.add(models.User(username="admin", name="Admin User", password_hash="x", role="admin"))


@pytest.fixture()
def manager(db: Database) -> models.User:
    return db.add(models.User(username="meena", name="Meena", password_hash="x", role="manager"))


@pytest.fixture()
def bearer():
    def _headers(user: models.User) -> dict[str, str]:
        token = auth_utils.create_access_token({"sub": str(user.id), "role": user.role})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def client(db: Database) -> TestClient:
    with TestClient(app) as test_client:
        yield test_client
