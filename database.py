from sqlmodel import SQLModel, create_engine, Session
from config import settings

# SQLite needs the thread check off because FastAPI serves sync routes from a threadpool
connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)

def create_db_and_tables(bind=None):
    # Import table modules so their metadata is registered
    import apps.auth.models  # noqa: F401
    import apps.tracker.models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)

def get_session():
    with Session(engine) as session:
        yield session
