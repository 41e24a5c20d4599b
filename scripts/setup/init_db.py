# scripts/setup/init_db.py
"""
Initialize database: creates all tables, optionally seeds a demo group.
Run once before first launch, or after adding new models.
Usage: python scripts/setup/init_db.py [--seed]
"""

import argparse
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from app.database import create_tables, engine, SessionLocal
from app.config import settings
from app.models import GroupMember, GroupRole, Vehicle
from app.utils.clock import utcnow
from sqlalchemy import inspect, text

DEMO_GROUP_ID = "00000000-0000-0000-0000-000000000001"
DEMO_VEHICLE_ID = "00000000-0000-0000-0000-000000000101"
DEMO_MEMBERS = [
    # user_id, share, role
    ("user-admin", 0.40, GroupRole.ADMIN),
    ("user-alice", 0.35, GroupRole.MEMBER),
    ("user-bob", 0.25, GroupRole.MEMBER),
]


def seed_demo_group():
    db = SessionLocal()
    try:
        if db.query(Vehicle).filter(Vehicle.id == DEMO_VEHICLE_ID).first():
            print("ℹ️  Demo group already present, skipping seed")
            return
        db.add(Vehicle(
            id=DEMO_VEHICLE_ID,
            group_id=DEMO_GROUP_ID,
            plate_number="DEMO-001",
            model="Demo Hatchback",
            registered_at=utcnow(),
            notes="Seeded by init_db.py",
        ))
        for i, (user_id, share, role) in enumerate(DEMO_MEMBERS, start=1):
            db.add(GroupMember(
                id=f"00000000-0000-0000-0000-00000000020{i}",
                group_id=DEMO_GROUP_ID,
                user_id=user_id,
                share_percentage=share,
                role=role,
            ))
        db.commit()
        print(f"🌱 Seeded vehicle {DEMO_VEHICLE_ID} with {len(DEMO_MEMBERS)} members")
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Create booking engine tables")
    parser.add_argument("--seed", action="store_true", help="Insert a demo vehicle and co-owners")
    args = parser.parse_args()

    print("🗄️  Booking Engine DB Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    # Test connection
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        print("\nMake sure PostgreSQL is running:")
        print("  docker-compose up -d db")
        print("  # or: sudo systemctl start postgresql")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    print("✅ All tables created")

    tables = sorted(inspect(engine).get_table_names())
    print(f"\n📊 Tables in database ({len(tables)} total):")
    for t in tables:
        print(f"   ✓ {t}")

    if args.seed:
        seed_demo_group()

    print("\n🎉 Database ready! You can now start the backend:")
    print("   uvicorn app.main:app --host 0.0.0.0 --port 8080 --reload")


if __name__ == "__main__":
    main()
