#!/usr/bin/env python3
"""
Admin User Seed Script
Creates the first administrator for the Carbon Registry.

Usage:
    python -m scripts.seed_admin <email> <name> <password>

Example:
    python -m scripts.seed_admin admin@registry.example "Registry Admin" securepassword123
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.database import SessionLocal, init_db
from app.models.db_models import UserDB, UserRole
from app.auth import hash_password


def create_admin_user(email: str, name: str, password: str) -> bool:
    """Create an admin user in the database."""
    # Ensure tables exist
    init_db()

    email = email.strip().lower()
    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.email == email).first()
        if existing:
            if existing.role == UserRole.ADMIN:
                print(f"User '{email}' is already an admin.")
                return True
            # Roles are fixed at creation
            print(f"Error: '{email}' is registered as {existing.role.value}; roles cannot be changed.")
            return False

        admin_user = UserDB(
            id=str(uuid4()),
            email=email,
            name=name,
            password_hash=hash_password(password),
            role=UserRole.ADMIN,
            specializations=[],
        )

        db.add(admin_user)
        db.commit()

        print("Admin user created successfully!")
        print(f"  Email: {email}")
        print(f"  Name: {name}")
        print("  Role: admin")
        return True

    except SQLAlchemyError as e:
        print(f"Error creating admin user: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) != 4:
        print(__doc__)
        sys.exit(1)

    email = sys.argv[1]
    name = sys.argv[2]
    password = sys.argv[3]

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_admin_user(email, name, password)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
