"""Shared fixtures: test environment for Settings and an in-memory SQLite database."""
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SUPABASE_URL", "https://auth.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("REPLICATE_API_TOKEN", "r8_test")
os.environ.setdefault("S3_BUCKET_NAME", "logos-bucket")
os.environ.setdefault("AWS_REGION", "us-east-1")
os.environ.setdefault("SITE_URL", "https://app.test")
os.environ.setdefault(
    "STRIPE_PRICE_PLANS",
    json.dumps(
        {
            "price_basic": "basic",
            "price_advanced": "advanced",
            "price_advanced_yearly": "Advanced Yearly",
            "price_ultimate": "ultimate",
            "price_starter": "starter",
            "price_pro": "pro",
            "price_business": "business",
        }
    ),
)

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.db.base import Base  # noqa: E402
from app.models import generation, payment, profile, subscription  # noqa: E402,F401


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_profile(db):
    from app.models.profile import Profile

    def _make(user_id="user-1", credits=0, **kwargs):
        p = Profile(id=user_id, email=kwargs.pop("email", f"{user_id}@example.com"), remaining_credits=credits, **kwargs)
        db.add(p)
        db.commit()
        return p

    return _make
