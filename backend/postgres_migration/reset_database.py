"""
Script to reset the database by dropping all tables and recreating them.
WARNING: This will delete all data, including link sync cursors!
Run with: python postgres_migration/reset_database.py (from the backend directory)
"""
import sys
from pathlib import Path

backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

from subtracker.database import engine, Base
from subtracker.models import (
    PlaidLink, StreamingService, Transaction,
    UserSubscription, SuggestedSubscription,
)


def reset_database():
    """Drop all tables and recreate them with the current schema."""
    print("⚠️  WARNING: This will delete all existing data!")

    engine.dispose()

    with engine.connect() as conn:
        print("Terminating active database connections...")
        try:
            conn.execute(text("""
                SELECT pg_terminate_backend(pg_stat_activity.pid)
                FROM pg_stat_activity
                WHERE pg_stat_activity.datname = current_database()
                AND pid <> pg_backend_pid();
            """))
            conn.commit()
            print("✓ Active connections terminated")
        except SQLAlchemyError as e:
            print(f"⚠ Could not terminate connections: {e}")
            conn.rollback()

    engine.dispose()

    print("\nDropping tables...")
    Base.metadata.drop_all(bind=engine)
    print("✓ All tables dropped")

    print("\nCreating tables...")
    Base.metadata.create_all(bind=engine)

    inspector = inspect(engine)
    for table_name in sorted(inspector.get_table_names()):
        print(f"  - {table_name}")

    print("\n✅ Database reset complete! You can now run seed_catalog.py")


if __name__ == "__main__":
    reset_database()
