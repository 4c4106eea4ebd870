#!/usr/bin/env python3
"""
Create (or promote) a portal administrator.

Usage:
    python scripts/create_admin.py --email admin@example.com --password 'secret123' [--full-name 'Admin User']
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from wasteadmin.config import settings
from wasteadmin.db import Base, SessionLocal, engine, utcnow
from wasteadmin.identity.factory import get_identity_provider
from wasteadmin.identity.provider import AccountExists
from wasteadmin.models.models import User
from wasteadmin.schemas.common import UserRole
from wasteadmin.services.permissions import permissions_for_role


def create_admin(email: str, password: str, full_name: str, phone: str = None) -> str:
    """Provision (or reuse) the identity account and upsert an active admin user. Returns the uid."""
    email = email.strip().lower()
    identity = get_identity_provider()
    try:
        uid = identity.create_account(email=email, display_name=full_name, password=password)
        print(f"[CREATE] Identity account {uid}")
    except AccountExists:
        uid = identity.get_uid_by_email(email)
        print(f"[REUSE] Identity account already exists: {uid}")
        identity.set_disabled(uid, False)
        identity.change_password(uid, password)

    db = SessionLocal()
    try:
        user = db.get(User, uid)
        if user is None:
            user = User(id=uid, email=email, full_name=full_name, created_at=utcnow())
            db.add(user)
        user.full_name = full_name
        user.phone = phone or user.phone
        user.role = UserRole.admin.value
        user.is_active = True
        user.permissions = permissions_for_role(UserRole.admin)
        user.updated_at = utcnow()
        db.commit()
        print(f"[ADMIN] {email} is an active administrator")
    finally:
        db.close()
    return uid


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create a portal administrator")
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--full-name", default="Admin User")
    parser.add_argument("--phone", default=None)
    args = parser.parse_args(argv)

    if len(args.password) < 8:
        print("[ERROR] Password must be at least 8 characters")
        return 1

    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("var", exist_ok=True)
    Base.metadata.create_all(bind=engine)
    create_admin(args.email, args.password, args.full_name, args.phone)
    return 0


if __name__ == "__main__":
    sys.exit(main())
