# tests/conftest.py
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from stockledger.actors import ActorRole, AdminActor, StaffActor
from stockledger.config import settings
from stockledger.database import init_db, make_engine
from stockledger.models.user import User
from stockledger.schemas.product import ProductCreate
from stockledger.services import product_service, stock_service


class FakeClock:
    """Deterministic clock; call it like ``utcnow``."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event) -> None:
        self.events.append(event)


@pytest.fixture(autouse=True)
def fast_retries(mocker) -> None:
    """Keep retry backoff short so conflict tests stay quick."""
    mocker.patch.object(settings, "MUTATION_RETRY_BACKOFF_SECONDS", 0.01)
    mocker.patch.object(settings, "STAFF_SCOPE", "product")


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so concurrent tests get real, separate connections."""
    test_engine = make_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    init_db(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 9, 0, 0))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


def _add_user(db, username: str, role: ActorRole, admin_id: str | None = None) -> User:
    # Password hashing is not under test; skip bcrypt cost here
    user = User(username=username, full_name=username.title(), password_hash="x", role=role, admin_id=admin_id)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def admin_user(db) -> User:
    return _add_user(db, "alice", ActorRole.ADMIN)


@pytest.fixture
def other_admin_user(db) -> User:
    return _add_user(db, "mallory", ActorRole.ADMIN)


@pytest.fixture
def staff_user(db, admin_user) -> User:
    return _add_user(db, "bob", ActorRole.STAFF, admin_id=admin_user.id)


@pytest.fixture
def outsider_staff_user(db, admin_user) -> User:
    return _add_user(db, "carol", ActorRole.STAFF, admin_id=admin_user.id)


@pytest.fixture
def admin(admin_user) -> AdminActor:
    return AdminActor(id=admin_user.id)


@pytest.fixture
def other_admin(other_admin_user) -> AdminActor:
    return AdminActor(id=other_admin_user.id)


@pytest.fixture
def staff(staff_user) -> StaffActor:
    return StaffActor(id=staff_user.id, admin_id=staff_user.admin_id)


@pytest.fixture
def outsider_staff(outsider_staff_user) -> StaffActor:
    return StaffActor(id=outsider_staff_user.id, admin_id=outsider_staff_user.admin_id)


@pytest.fixture
def category(db, admin):
    return product_service.create_category(db, admin, "Beverages")


@pytest.fixture
def make_product(db, admin, category, clock):
    """Factory: create a product owned by ``admin`` in ``category``."""
    counter = {"n": 0}

    def _make(number_of_stocks: int = 20, threshold: int = 10, price: float = 2.5, sku: str | None = None):
        counter["n"] += 1
        data = ProductCreate(
            sku=sku or f"SKU-{counter['n']:03d}",
            name=f"Product {counter['n']}",
            category_id=category.id,
            price=price,
            number_of_stocks=number_of_stocks,
            threshold=threshold,
        )
        return product_service.create_product(db, admin, data, clock=clock)

    return _make


@pytest.fixture
def product(make_product):
    """Stock 20, threshold 10: GOOD."""
    return make_product(number_of_stocks=20, threshold=10)


@pytest.fixture
def assigned_product(db, admin, staff, product):
    product_service.assign_staff_to_product(db, admin, product.id, staff.id)
    return product


@pytest.fixture
def timeline(db, admin, product, clock):
    """``product`` with +20 on Mar 2 09:00, -5 on Mar 3 10:00, +10 on Mar 5 12:00."""
    clock.now = datetime(2026, 3, 3, 10, 0)
    stock_service.decrease_stock(db, admin, product.id, 5, clock=clock)
    clock.now = datetime(2026, 3, 5, 12, 0)
    stock_service.increase_stock(db, admin, product.id, 10, clock=clock)
    return product
