from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from negotiation_service.core.config import settings

# SQLite (local development) needs cross-thread access for FastAPI's threadpool.
connect_args = (
    {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
)

# The engine is the entry point to the database. It's configured with the
# database URL and handles the connection pooling.
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args)

# SessionLocal is a factory for creating new Session objects.
# A session is the workspace for all database operations within one request.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        # Always closed, even if the endpoint raised.
        db.close()
