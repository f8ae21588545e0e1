from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from catalog.core.config import get_settings
from catalog.services.audit import AuditLog


settings = get_settings()

database_engine = create_engine(
    settings.database_url,
    echo=False,
    future=True,
    pool_pre_ping=True,  # keep connections healthy on MySQL
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=database_engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_audit_log() -> AuditLog:
    # Audit entries use their own sessions so they commit independently of the request's.
    return AuditLog(SessionLocal, default_actor=settings.audit_default_actor)
