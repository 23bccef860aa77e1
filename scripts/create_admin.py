"""
Create the admin account from ADMIN_USERNAME / ADMIN_EMAIL / ADMIN_PHONE / ADMIN_PASSWORD in .env.
Usage: python scripts/create_admin.py
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.database import Base, SessionLocal, engine
from app.models import User, Parking, Occupation  # noqa: F401
from app.seed import seed_admin


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        admin = seed_admin(db)
        if admin is None:
            print("Set ADMIN_USERNAME, ADMIN_EMAIL, ADMIN_PHONE and ADMIN_PASSWORD in .env first.")
            sys.exit(1)
        print(f"Admin account: {admin.username} (id={admin.id}, role={admin.role.value})")
    finally:
        db.close()


if __name__ == "__main__":
    main()
