"""
Delete the user with the given email together with their parkings and occupations.
Usage: python scripts/delete_users_by_email.py <email> [<email> ...]
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.database import SessionLocal
from app.models.user import User
from app.services.cleanup import delete_account_cascade


def main():
    emails = [(a or "").strip().lower() for a in sys.argv[1:] if (a or "").strip()]
    if not emails:
        print("Usage: python scripts/delete_users_by_email.py <email> [<email> ...]")
        sys.exit(1)

    db = SessionLocal()
    deleted = 0
    try:
        for email in emails:
            user = db.query(User).filter(User.email == email).first()
            if not user:
                print(f"No user found with email: {email}")
                continue
            uid, role = user.id, user.role.value
            if delete_account_cascade(db, uid):
                deleted += 1
                print(f"Deleted user: {email} (role={role}, id={uid})")
        print(f"Done. Deleted {deleted} user(s).")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
