"""
Database check
Connects with the configured DATABASE_URL, lists tables and columns, and
reports whether the tickets table matches the current model.
Run with --create to create missing tables.
Works for PostgreSQL and SQLite (dev).
"""
import sys

from sqlalchemy import inspect

from app_models import Ticket
from config import load_settings
from database import create_db_engine, create_tables


def check_db(engine):
    """Return {table: [column, ...]} and the model columns missing from `tickets`."""
    inspector = inspect(engine)
    tables = {
        name: [col["name"] for col in inspector.get_columns(name)]
        for name in inspector.get_table_names()
    }
    expected = [col.name for col in Ticket.__table__.columns]
    missing = [col for col in expected if col not in tables.get(Ticket.__tablename__, [])]
    return tables, missing


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    engine = create_db_engine(load_settings())
    print(f"Connecting to database: {engine.url.render_as_string(hide_password=True)}")

    try:
        if "--create" in argv:
            create_tables(engine)
            print("[OK] Tables created")

        tables, missing = check_db(engine)
        if not tables:
            print("[WARN] No tables found.")
        for name, columns in tables.items():
            print(f"\nColumns for table: {name}")
            for col in columns:
                print(f"   - {col}")

        if missing:
            print(f"\n[WARN] tickets is missing columns: {', '.join(missing)}")
            return 1
        print("\n[OK] tickets table matches the model")
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
