from contextlib import contextmanager
import os
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")


def _ensure_sqlite_parent(url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_path = url.split("sqlite:///")[-1]
        try:
            parent = Path(db_path).expanduser().resolve().parent
            parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            # best-effort; real error will surface on connect if still invalid
            pass


def build_engine(url: str):
    _ensure_sqlite_parent(url)
    if url.startswith("sqlite") and ":memory:" in url:
        # one shared connection so every session sees the same in-memory database
        return create_engine(
            url, future=True, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    if url.startswith("sqlite"):
        return create_engine(url, future=True, connect_args={"check_same_thread": False})
    return create_engine(url, future=True, pool_pre_ping=True)


def create_session_factory(url_or_engine):
    """Return a ``get_session``-style context manager bound to its own engine.

    Each ``with factory() as session`` block is one transaction: committed on
    normal exit, rolled back when the block raises.
    """
    bind = build_engine(url_or_engine) if isinstance(url_or_engine, str) else url_or_engine
    maker = sessionmaker(bind=bind, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def factory():
        session = maker()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    factory.engine = bind
    return factory


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


@contextmanager
def get_session():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


get_session.engine = engine


def init_db(bind=None) -> None:
    from ..models import Base

    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def session_scope(session_factory, session=None):
    """Join the caller's transaction when ``session`` is given, otherwise open a new one."""
    if session is not None:
        yield session
        return
    with session_factory() as own:
        yield own
