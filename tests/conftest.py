import os

# Configure before moviebook modules read the environment
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["PAYMENT_GATEWAY"] = "fallback"
os.environ["RAZORPAY_KEY_SECRET"] = ""
os.environ["SHOW_TIMEZONE"] = "UTC"

from datetime import date, timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from moviebook.auth import create_access_token  # noqa: E402
from moviebook.core.redis import get_optional_redis  # noqa: E402
from moviebook.database import payment_models  # noqa: E402,F401
from moviebook.database.database import Base, get_db  # noqa: E402
from moviebook.database.models import (  # noqa: E402
    Movie,
    SeatCategory,
    Showtime,
    ShowtimePricing,
    Theatre,
    User,
)
from moviebook.main import app  # noqa: E402
from moviebook.services.expiry_sweeper import cancel_expiry_timers  # noqa: E402
from moviebook.services.payment_service import FallbackGateway, get_payment_gateway  # noqa: E402

FAR_FUTURE = date.today() + timedelta(days=30)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


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


@pytest.fixture(autouse=True)
def _clear_expiry_timers():
    yield
    cancel_expiry_timers()


@pytest.fixture
def users(db):
    alice = User(name="Alice", email="alice@example.com")
    bob = User(name="Bob", email="bob@example.com")
    db.add_all([alice, bob])
    db.commit()
    return alice, bob


@pytest.fixture
def make_showtime(db):
    """Factory: a showtime with Gold pricing (200) unless told otherwise."""

    def _make(
        total=10,
        show_date=FAR_FUTURE,
        start_time="10:00",
        pricing=None,
        is_active=True,
    ):
        movie = Movie(title="Interstellar", language="English")
        theatre = Theatre(name="PVR Phoenix", city="Pune")
        db.add_all([movie, theatre])
        db.flush()
        showtime = Showtime(
            movie_id=movie.id,
            theatre_id=theatre.id,
            screen_number=1,
            show_date=show_date,
            start_time=start_time,
            seats_total=total,
            seats_available=total,
            is_active=is_active,
        )
        for entry in pricing or [{"category": SeatCategory.Gold, "price": 200}]:
            showtime.pricing.append(ShowtimePricing(**entry))
        db.add(showtime)
        db.commit()
        db.refresh(showtime)
        return showtime

    return _make


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    async def no_redis():
        return None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_optional_redis] = no_redis
    app.dependency_overrides[get_payment_gateway] = lambda: FallbackGateway()
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id, role="user"):
    token = create_access_token({"sub": str(user_id), "role": role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers_for():
    return auth_headers
