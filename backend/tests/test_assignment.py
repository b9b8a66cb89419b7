"""
Tests for the officer assignment resolver.

1. Priority: city → region → any officer → none
2. Specialists preferred inside a jurisdiction, registration order otherwise
3. Assignment writes are conditional (at most one officer)
"""
from uuid import uuid4

import pytest

from app.models.db_models import ProjectCategory, ProjectEventDB, ProjectState, UserDB, UserRole
from app.services.errors import AlreadyAssigned, IncompleteData, InvalidState, NotFound
from app.services.workflow import OfficerAssignmentResolver, ProjectService, select_officer


def officer(jurisdiction, specializations=None):
    return UserDB(
        id=str(uuid4()),
        role=UserRole.OFFICER,
        jurisdiction=jurisdiction,
        specializations=specializations or [],
    )


# =============================================================================
# SELECTION RULES
# =============================================================================

class TestSelectOfficer:
    """Pure selection over officers in registration order."""

    def test_specialist_in_city_wins(self):
        """Pune + forestry picks the Pune forestry specialist."""
        generalist = officer("Pune")
        specialist = officer("Pune", ["forestry"])
        chosen = select_officer([generalist, specialist], "Pune", "Maharashtra", ProjectCategory.FORESTRY)
        assert chosen is specialist

    def test_first_in_city_without_specialist(self):
        first = officer("Pune", ["methane_capture"])
        second = officer("Pune")
        chosen = select_officer([first, second], "Pune", None, ProjectCategory.FORESTRY)
        assert chosen is first

    def test_city_beats_region_specialist(self):
        """A city match without the specialization still beats a region specialist."""
        region_specialist = officer("Maharashtra", ["forestry"])
        city_officer = officer("Pune")
        chosen = select_officer([region_specialist, city_officer], "Pune", "Maharashtra", "forestry")
        assert chosen is city_officer

    def test_falls_back_to_region(self):
        elsewhere = officer("Delhi")
        regional = officer("Maharashtra")
        regional_specialist = officer("Maharashtra", ["renewable_energy"])
        chosen = select_officer(
            [elsewhere, regional, regional_specialist], "Nashik", "Maharashtra", ProjectCategory.RENEWABLE_ENERGY
        )
        assert chosen is regional_specialist

    def test_falls_back_to_first_officer(self):
        first = officer("Delhi")
        second = officer("Chennai", ["forestry"])
        chosen = select_officer([first, second], "Pune", "Maharashtra", ProjectCategory.FORESTRY)
        assert chosen is first

    def test_no_officers(self):
        """No officers at all is a valid outcome."""
        assert select_officer([], "Pune", "Maharashtra", ProjectCategory.FORESTRY) is None

    def test_jurisdiction_match_is_case_insensitive(self):
        other = officer("Delhi")
        local = officer("  pune ")
        assert select_officer([other, local], "Pune", None, "forestry") is local

    def test_missing_location_uses_fallback(self):
        first = officer("Pune")
        assert select_officer([first], None, None, "forestry") is first


# =============================================================================
# ASSIGNMENT WRITES
# =============================================================================

class TestOfficerAssignmentResolver:
    """Resolver against the database."""

    def test_resolve_uses_registration_order(self, db, make_user):
        first = make_user(UserRole.OFFICER, jurisdiction="Pune")
        make_user(UserRole.OFFICER, jurisdiction="Pune")
        assert OfficerAssignmentResolver(db).resolve("Pune", None, "forestry") == first.id

    def test_creation_without_officers_leaves_project_unassigned(self, db, authority):
        """NoneAvailable: unassigned, still pending, and logged as awaiting assignment."""
        project = ProjectService(db).create_project(
            {"name": "Solar farm", "description": "Rooftop PV", "category": "renewable_energy", "city": "X"},
            authority,
        )
        assert project.assigned_officer_id is None
        assert project.state == ProjectState.PENDING
        events = db.query(ProjectEventDB).filter(ProjectEventDB.project_id == project.id).all()
        assert "assignment_pending" in {e.event_type for e in events}

    def test_creation_assigns_matching_officer(self, db, authority, make_user):
        make_user(UserRole.OFFICER, jurisdiction="Delhi")
        local = make_user(UserRole.OFFICER, jurisdiction="X")
        project = ProjectService(db).create_project(
            {"name": "Solar farm", "description": "Rooftop PV", "category": "renewable_energy", "city": "X"},
            authority,
        )
        assert project.assigned_officer_id == local.id
        assert project.state == ProjectState.PENDING

    def test_self_assign(self, db, authority, officer, make_project):
        project = make_project(authority)
        assigned = OfficerAssignmentResolver(db).self_assign(project.id, officer)
        assert assigned.assigned_officer_id == officer.id
        assert assigned.state == ProjectState.PENDING

    def test_reassignment_is_rejected(self, db, authority, officer, make_user, make_project):
        """An assigned project must be cleared before another officer takes it."""
        other = make_user(UserRole.OFFICER, jurisdiction="Delhi")
        project = make_project(authority, officer=officer)
        with pytest.raises(AlreadyAssigned):
            OfficerAssignmentResolver(db).self_assign(project.id, other)

    def test_concurrent_claims_one_wins(self, session_factory, db, authority, officer, make_user, make_project):
        """Both sessions read the project unassigned; only the first write lands."""
        other = make_user(UserRole.OFFICER, jurisdiction="Delhi")
        project_id = make_project(authority).id
        officer_id, other_id = officer.id, other.id

        first, second = session_factory(), session_factory()
        try:
            stale = second.query(UserDB).filter(UserDB.id == other_id).one()
            second_resolver = OfficerAssignmentResolver(second)
            second_project = second_resolver._get_project(project_id)
            assert second_project.assigned_officer_id is None

            winner = first.query(UserDB).filter(UserDB.id == officer_id).one()
            OfficerAssignmentResolver(first).self_assign(project_id, winner)

            with pytest.raises(AlreadyAssigned):
                second_resolver.assign(second_project, stale.id, actor_id=stale.id, method="self")
            second.rollback()
        finally:
            first.close()
            second.close()

        db.expire_all()
        reloaded = OfficerAssignmentResolver(db)._get_project(project_id)
        assert reloaded.assigned_officer_id == officer_id

    def test_admin_assign_requires_officer(self, db, admin, authority, make_project):
        project = make_project(authority)
        with pytest.raises(IncompleteData):
            OfficerAssignmentResolver(db).admin_assign(project.id, authority.id, admin)

    def test_admin_assign_unknown_officer(self, db, admin, authority, make_project):
        project = make_project(authority)
        with pytest.raises(NotFound):
            OfficerAssignmentResolver(db).admin_assign(project.id, "missing", admin)

    def test_clear_then_reassign(self, db, admin, authority, officer, make_user, make_project):
        other = make_user(UserRole.OFFICER, jurisdiction="Delhi")
        project = make_project(authority, officer=officer)
        resolver = OfficerAssignmentResolver(db)

        cleared = resolver.clear_assignment(project.id, admin)
        assert cleared.assigned_officer_id is None

        reassigned = resolver.admin_assign(project.id, other.id, admin)
        assert reassigned.assigned_officer_id == other.id

    def test_clear_after_verification_started(self, db, admin, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        with pytest.raises(InvalidState):
            OfficerAssignmentResolver(db).clear_assignment(project.id, admin)

    def test_assign_after_decision_is_invalid(self, db, authority, officer, make_project):
        project = make_project(authority, state=ProjectState.REJECTED)
        with pytest.raises(InvalidState):
            OfficerAssignmentResolver(db).self_assign(project.id, officer)
