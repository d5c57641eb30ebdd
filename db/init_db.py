"""Create all database tables from ORM models."""

from pathlib import Path

from db.models import Base
from db.session import DATABASE_URL, engine

if __name__ == "__main__":
    if DATABASE_URL.startswith("sqlite:///"):
        Path(DATABASE_URL.removeprefix("sqlite:///")).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)
    print("DB schema created")
