"""
User Service

Registration, admin provisioning and profile edits. Roles are fixed at
creation; only officers carry jurisdiction and specializations.
"""
from uuid import uuid4
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth import hash_password, verify_password
from ..models.db_models import ProjectCategory, UserDB, UserRole
from .access import as_role, ensure_authorized
from .errors import Conflict, IncompleteData, NotFound
from .pagination import paginate
from .unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

SELF_REGISTER_ROLES = (UserRole.PROJECT_AUTHORITY, UserRole.OFFICER)
UPDATABLE_FIELDS = ("name", "email", "password", "jurisdiction", "specializations")


def clean_specializations(values: Optional[Iterable[str]]) -> List[str]:
    """Validate and de-duplicate, keeping the given order."""
    cleaned = []
    for value in values or []:
        try:
            category = ProjectCategory(value).value
        except ValueError:
            raise IncompleteData(
                "Unknown specialization",
                {"specializations": f"'{value}' is not a project category"},
            )
        if category not in cleaned:
            cleaned.append(category)
    return cleaned


class UserService:

    def __init__(self, db: Session):
        self.db = db

    def register(
        self,
        email: str,
        name: str,
        password: str,
        role,
        jurisdiction: Optional[str] = None,
        specializations: Optional[Iterable[str]] = None,
    ) -> UserDB:
        """Self-registration for project authorities and officers."""
        role = as_role(role)
        if role not in SELF_REGISTER_ROLES:
            raise IncompleteData("Role cannot self-register", {"role": "must be officer or project_authority"})
        user = self._create(email, name, password, role, jurisdiction, specializations)
        logger.info(f"User registered: {user.email} ({user.role.value})")
        return user

    def provision(self, admin: UserDB, email: str, name: str, password: str, role, **officer_fields) -> UserDB:
        """Admin creates an account with any role."""
        ensure_authorized(admin.role, [UserRole.ADMIN], "provision users")
        user = self._create(email, name, password, as_role(role), **officer_fields)
        logger.info(f"User provisioned by {admin.id}: {user.email} ({user.role.value})")
        return user

    def _create(
        self,
        email: str,
        name: str,
        password: str,
        role: UserRole,
        jurisdiction: Optional[str] = None,
        specializations: Optional[Iterable[str]] = None,
    ) -> UserDB:
        errors = {}
        if not name or not name.strip():
            errors["name"] = "required"
        if not password or len(password) < 8:
            errors["password"] = "must be at least 8 characters"
        if role == UserRole.OFFICER and not (jurisdiction or "").strip():
            errors["jurisdiction"] = "required for officers"
        if errors:
            raise IncompleteData("Registration data is invalid", errors)

        email = email.strip().lower()
        if self.db.query(UserDB).filter(UserDB.email == email).first():
            raise Conflict("Email already registered", code="email_taken")

        is_officer = role == UserRole.OFFICER
        user = UserDB(
            id=str(uuid4()),
            email=email,
            name=name.strip(),
            password_hash=hash_password(password),
            role=role,
            jurisdiction=jurisdiction.strip() if is_officer else None,
            specializations=clean_specializations(specializations) if is_officer else [],
        )
        with unit_of_work(self.db, "create user", conflict=Conflict("Email already registered", code="email_taken")):
            self.db.add(user)
        self.db.refresh(user)
        return user

    def authenticate(self, email: str, password: str) -> Optional[UserDB]:
        user = self.db.query(UserDB).filter(UserDB.email == email.strip().lower()).first()
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    def update_user(self, user_id: str, changes: Dict[str, Any], admin: UserDB) -> UserDB:
        """Admin edit. Role is immutable."""
        ensure_authorized(admin.role, [UserRole.ADMIN], "update users")
        user = self.get_user(user_id)

        if "role" in changes:
            raise IncompleteData("Role cannot be changed", {"role": "immutable"})
        unknown = [k for k in changes if k not in UPDATABLE_FIELDS]
        if unknown:
            raise IncompleteData("Unknown fields", {k: "field cannot be set" for k in unknown})
        if user.role != UserRole.OFFICER and (
            changes.get("jurisdiction") is not None or changes.get("specializations") is not None
        ):
            raise IncompleteData("Only officers have a jurisdiction", {"jurisdiction": "officers only"})
        if changes.get("password") is not None and len(changes["password"]) < 8:
            raise IncompleteData("Password too short", {"password": "must be at least 8 characters"})
        blank = {
            k: "required" for k in ("name", "jurisdiction")
            if k in changes and changes[k] is not None and not changes[k].strip()
        }
        if blank:
            raise IncompleteData("Fields cannot be blank", blank)
        specializations = None
        if changes.get("specializations") is not None:
            specializations = clean_specializations(changes["specializations"])
        email = None
        if changes.get("email") is not None:
            email = changes["email"].strip().lower()
            taken = self.db.query(UserDB).filter(UserDB.email == email, UserDB.id != user.id).first()
            if taken:
                raise Conflict("Email already registered", code="email_taken")

        if changes.get("name") is not None:
            user.name = changes["name"].strip()
        if email is not None:
            user.email = email
        if changes.get("password") is not None:
            user.password_hash = hash_password(changes["password"])
        if changes.get("jurisdiction") is not None:
            user.jurisdiction = changes["jurisdiction"].strip()
        if specializations is not None:
            user.specializations = specializations
        user.updated_at = datetime.utcnow()

        with unit_of_work(self.db, "update user", conflict=Conflict("Email already registered", code="email_taken")):
            self.db.add(user)
        self.db.refresh(user)
        logger.info(f"User {user.id} updated by admin {admin.id}")
        return user

    def get_user(self, user_id: str) -> UserDB:
        user = self.db.query(UserDB).filter(UserDB.id == user_id).first()
        if user is None:
            raise NotFound("User not found")
        return user

    def list_users(
        self,
        role: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[UserDB], Dict[str, int]]:
        query = self.db.query(UserDB)
        if role and role != "all":
            query = query.filter(UserDB.role == as_role(role))
        if search:
            term = f"%{search}%"
            query = query.filter(or_(UserDB.name.ilike(term), UserDB.email.ilike(term)))
        query = query.order_by(UserDB.created_at.desc(), UserDB.id)
        return paginate(query, page, page_size)

    def officers(self) -> List[UserDB]:
        return (
            self.db.query(UserDB)
            .filter(UserDB.role == UserRole.OFFICER)
            .order_by(UserDB.created_at, UserDB.id)
            .all()
        )
