"""
Seed script to populate the streaming service catalog.
Run with: python postgres_migration/seed_catalog.py (from the backend directory)

Safe to re-run: existing services get their price and merchant patterns
refreshed, nothing is duplicated. The running API picks up changes once its
catalog cache expires (CATALOG_CACHE_TTL_SECONDS).
"""

import sys
from pathlib import Path

# Add parent directory to path so we can import subtracker modules
# This allows running from either backend/ or backend/postgres_migration/
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from subtracker.catalog_seed import seed_catalog
from subtracker.database import engine, SessionLocal, Base
import subtracker.models  # noqa: F401  (registers tables on Base.metadata)


def main():
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        created, updated = seed_catalog(db)
        print(f"✓ Catalog seeded: {created} created, {updated} updated")
    finally:
        db.close()


if __name__ == "__main__":
    main()
