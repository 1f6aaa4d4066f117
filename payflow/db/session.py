# payflow/db/session.py

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from payflow.core.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# Sessions never autocommit: multi-write units (payment + voucher usage,
# refund + audit) are committed together by the caller.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
