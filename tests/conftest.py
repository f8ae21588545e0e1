"""Shared fixtures: a file-backed SQLite database per test and service wiring."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-catalog-suite-0123456789"
os.environ["SESSION_COOKIE_SECURE"] = "false"

from typing import Generator, Iterable, Optional

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.orm import Session, sessionmaker

from catalog.core.text import slugify
from catalog.db.models import Base, Category, Product, product_categories
from catalog.services.audit import AuditLog
from catalog.services.categories import CategoryLifecycleService, CreateCategoryInput


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'catalog.db'}", future=True)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def audit(session_factory) -> AuditLog:
    return AuditLog(session_factory)


@pytest.fixture
def service(db, audit) -> CategoryLifecycleService:
    return CategoryLifecycleService(db, audit)


@pytest.fixture
def make_category(service):
    """Create a category through the lifecycle service."""

    def _make(name: str, parent_id: Optional[int] = None, description: Optional[str] = None) -> Category:
        return service.create(CreateCategoryInput(name=name, parent_id=parent_id, description=description))

    return _make


@pytest.fixture
def make_product(db):
    """Insert a product linked to the given categories."""
    counter = iter(range(1, 100_000))

    def _make(
        name: str = "Chester Koltuk",
        category_ids: Iterable[int] = (),
        visible: bool = True,
        price: Optional[str] = None,
    ) -> Product:
        product = Product(name=name, slug=f"{slugify(name)}-{next(counter)}", visible=visible, price=price)
        db.add(product)
        db.flush()
        for category_id in category_ids:
            db.execute(insert(product_categories).values(product_id=product.id, category_id=category_id))
        db.commit()
        return product

    return _make
