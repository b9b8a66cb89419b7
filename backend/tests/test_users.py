"""
Tests for registration, provisioning and admin edits of user accounts.
"""
import pytest

from app.models.db_models import UserRole
from app.services.errors import Conflict, IncompleteData, Unauthorized
from app.services.users import UserService


class TestRegistration:

    def test_officer_profile_is_cleaned(self, db):
        user = UserService(db).register(
            "Field@Example.com", " Field Officer ", "password123", "officer",
            jurisdiction=" Pune ", specializations=["forestry", "forestry", "other"],
        )
        assert user.email == "field@example.com"
        assert user.name == "Field Officer"
        assert user.jurisdiction == "Pune"
        assert user.specializations == ["forestry", "other"]

    def test_admin_cannot_self_register(self, db):
        with pytest.raises(IncompleteData):
            UserService(db).register("root@example.com", "Root", "password123", UserRole.ADMIN)

    def test_only_admin_provisions(self, db, authority):
        with pytest.raises(Unauthorized):
            UserService(db).provision(authority, "x@example.com", "X", "password123", UserRole.ADMIN)


class TestUpdateUser:
    """Admin edits; validation happens before anything is written."""

    def test_rename(self, db, admin, authority):
        updated = UserService(db).update_user(authority.id, {"name": "  Green Trust "}, admin)
        assert updated.name == "Green Trust"

    def test_blank_name_rejected(self, db, admin, authority):
        with pytest.raises(IncompleteData) as exc_info:
            UserService(db).update_user(authority.id, {"name": "   "}, admin)
        assert exc_info.value.field_errors == {"name": "required"}

        db.refresh(authority)
        assert authority.name == "Authority"

    def test_blank_jurisdiction_rejected(self, db, admin, officer):
        with pytest.raises(IncompleteData):
            UserService(db).update_user(officer.id, {"jurisdiction": " "}, admin)
        db.refresh(officer)
        assert officer.jurisdiction == "Pune"

    def test_role_is_immutable(self, db, admin, authority):
        with pytest.raises(IncompleteData) as exc_info:
            UserService(db).update_user(authority.id, {"role": "admin"}, admin)
        assert exc_info.value.field_errors == {"role": "immutable"}

    def test_email_taken(self, db, admin, authority, officer):
        with pytest.raises(Conflict):
            UserService(db).update_user(authority.id, {"email": officer.email.upper()}, admin)
