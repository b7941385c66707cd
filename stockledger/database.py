from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from stockledger.config import settings


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = settings.SQLITE_BUSY_TIMEOUT

    new_engine = create_engine(url, connect_args=connect_args)

    if url.startswith("sqlite"):
        @event.listens_for(new_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = make_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine | None = None):
    # Import all models so Base.metadata knows about them
    import stockledger.models.user  # noqa: F401
    import stockledger.models.category  # noqa: F401
    import stockledger.models.product  # noqa: F401
    import stockledger.models.inventory_log  # noqa: F401
    import stockledger.models.snapshot  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
