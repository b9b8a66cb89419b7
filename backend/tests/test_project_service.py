"""
Tests for project submission, editing, attachments and deletion.
"""
from datetime import date

import pytest

from app.models.db_models import (
    ProjectCategory, ProjectDB, ProjectEventDB, ProjectState, ReportDecision, UserDB, UserRole,
    VerificationReportDB,
)
from app.services.errors import (
    Conflict, DependencyFailure, IncompleteData, InvalidState, NotFound, NotOwner, Unauthorized,
)
from app.services.storage import LocalObjectStorage, ObjectStorage
from app.services.workflow import ProjectService

PROJECT = {
    "name": "Western Ghats Reforestation",
    "description": "Native species planting on degraded land",
    "category": "forestry",
    "city": "Pune",
    "region": "Maharashtra",
    "country": "India",
    "land_area": 250,
    "land_area_unit": "ha",
    "estimated_credits": 1200,
}


class FailingStorage(ObjectStorage):
    def save(self, filename, content):
        raise DependencyFailure("File storage is unavailable")

    def delete(self, url):
        pass


class TestCreateProject:

    def test_authority_owns_new_project(self, db, authority, officer):
        project = ProjectService(db).create_project(dict(PROJECT), authority)
        assert project.authority_id == authority.id
        assert project.category == ProjectCategory.FORESTRY
        assert project.assigned_officer_id == officer.id
        assert project.state == ProjectState.PENDING

        event_types = [e.event_type for e in ProjectService(db).project_events(project.id, authority)]
        assert event_types[0] == "project_created"
        assert "officer_assigned" in event_types

    def test_officer_cannot_create(self, db, officer):
        with pytest.raises(Unauthorized):
            ProjectService(db).create_project(dict(PROJECT), officer)

    def test_admin_must_name_authority(self, db, admin):
        with pytest.raises(IncompleteData) as exc_info:
            ProjectService(db).create_project(dict(PROJECT), admin)
        assert exc_info.value.field_errors == {"authority_id": "required"}

    def test_admin_creates_for_authority(self, db, admin, authority):
        project = ProjectService(db).create_project(dict(PROJECT, authority_id=authority.id), admin)
        assert project.authority_id == authority.id

    def test_admin_cannot_assign_ownership_to_officer(self, db, admin, officer):
        with pytest.raises(IncompleteData):
            ProjectService(db).create_project(dict(PROJECT, authority_id=officer.id), admin)

    def test_missing_fields(self, db, authority):
        with pytest.raises(IncompleteData) as exc_info:
            ProjectService(db).create_project({"name": "Only a name"}, authority)
        assert set(exc_info.value.field_errors) == {"description", "category"}

    def test_end_before_start(self, db, authority):
        data = dict(PROJECT, start_date=date(2025, 1, 1), end_date=date(2024, 1, 1))
        with pytest.raises(IncompleteData) as exc_info:
            ProjectService(db).create_project(data, authority)
        assert "end_date" in exc_info.value.field_errors

    def test_unknown_category(self, db, authority):
        with pytest.raises(IncompleteData):
            ProjectService(db).create_project(dict(PROJECT, category="oceans"), authority)
        assert db.query(ProjectDB).count() == 0


class TestReadProjects:

    def test_list_is_scoped_and_paginated(self, db, authority, make_user, make_project):
        other = make_user(UserRole.PROJECT_AUTHORITY)
        for _ in range(3):
            make_project(authority)
        make_project(other)

        projects, meta = ProjectService(db).list_projects(authority, page=1, page_size=2)
        assert len(projects) == 2
        assert meta == {"total": 3, "page": 1, "page_size": 2, "total_pages": 2}
        assert all(p.authority_id == authority.id for p in projects)

    def test_newest_first(self, db, admin, authority, make_project):
        first = make_project(authority)
        second = make_project(authority)
        projects, _ = ProjectService(db).list_projects(admin)
        assert [p.id for p in projects] == [second.id, first.id]

    def test_filters(self, db, admin, authority, officer, make_project):
        make_project(authority, name="Solar Pune", category=ProjectCategory.RENEWABLE_ENERGY)
        make_project(authority, officer=officer, state=ProjectState.APPROVED, city="Nagpur")
        make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        service = ProjectService(db)

        assert service.list_projects(admin, status="pending")[1]["total"] == 2
        assert service.list_projects(admin, status="approved")[1]["total"] == 1
        assert service.list_projects(admin, category="renewable_energy")[1]["total"] == 1
        assert service.list_projects(admin, search="nagpur")[1]["total"] == 1
        assert service.list_projects(admin, status="all")[1]["total"] == 3

    def test_get_project_visibility(self, db, authority, officer, make_user, make_project):
        stranger = make_user(UserRole.PROJECT_AUTHORITY)
        project = make_project(authority, officer=officer)
        service = ProjectService(db)

        assert service.get_project(project.id, officer).id == project.id
        with pytest.raises(Unauthorized):
            service.get_project(project.id, stranger)
        with pytest.raises(NotFound):
            service.get_project("missing", authority)

    def test_verification_queue(self, db, authority, officer, make_user, make_project):
        other = make_user(UserRole.OFFICER, jurisdiction="Delhi")
        make_project(authority)
        make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        make_project(authority, officer=other)
        service = ProjectService(db)

        assert service.verification_queue(officer)[1]["total"] == 2
        assert service.verification_queue(officer, status="in_progress")[1]["total"] == 1
        with pytest.raises(Unauthorized):
            service.verification_queue(authority)


class TestUpdateProject:

    def test_owner_edits_unassigned_project(self, db, authority, make_project):
        project = make_project(authority)
        updated = ProjectService(db).update_project(project.id, {"name": "Renamed", "land_area": 300}, authority)
        assert updated.name == "Renamed"
        assert updated.land_area == 300

    def test_owner_locked_out_after_assignment(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer)
        with pytest.raises(InvalidState):
            ProjectService(db).update_project(project.id, {"name": "Too late"}, authority)

    def test_admin_edits_any_time(self, db, admin, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        updated = ProjectService(db).update_project(project.id, {"description": "Corrected"}, admin)
        assert updated.description == "Corrected"

    def test_non_owner_rejected(self, db, authority, make_user, make_project):
        stranger = make_user(UserRole.PROJECT_AUTHORITY)
        project = make_project(authority)
        with pytest.raises(NotOwner):
            ProjectService(db).update_project(project.id, {"name": "Mine now"}, stranger)

    def test_workflow_fields_cannot_be_set(self, db, admin, authority, make_project):
        project = make_project(authority)
        with pytest.raises(IncompleteData):
            ProjectService(db).update_project(project.id, {"state": "approved"}, admin)
        with pytest.raises(IncompleteData):
            ProjectService(db).update_project(project.id, {"authority_id": admin.id}, admin)

    def test_core_fields_cannot_be_cleared(self, db, authority, make_project):
        project = make_project(authority)
        service = ProjectService(db)
        for field in ("name", "description", "category"):
            with pytest.raises(IncompleteData) as exc_info:
                service.update_project(project.id, {field: None}, authority)
            assert exc_info.value.field_errors == {field: "required"}

        db.refresh(project)
        assert project.name.startswith("Project ")

    def test_optional_fields_can_be_cleared(self, db, authority, make_project):
        project = make_project(authority, address="12 Ghat Road")
        updated = ProjectService(db).update_project(project.id, {"address": None}, authority)
        assert updated.address is None

    def test_date_order_checked_against_stored_value(self, db, authority, make_project):
        project = make_project(authority, start_date=date(2024, 6, 1))
        with pytest.raises(IncompleteData):
            ProjectService(db).update_project(project.id, {"end_date": date(2024, 1, 1)}, authority)


class TestAttachments:

    def test_document_upload(self, db, authority, make_project, tmp_path):
        storage = LocalObjectStorage(root=str(tmp_path / "files"), base_url="/files")
        project = make_project(authority)

        updated = ProjectService(db, storage=storage).add_attachment(
            project.id, authority, "document", "survey plan.pdf", b"%PDF-1.4"
        )
        assert len(updated.documents) == 1
        assert updated.documents[0]["name"] == "survey plan.pdf"
        assert updated.documents[0]["url"].startswith("/files/")
        assert updated.images == []
        assert len(list((tmp_path / "files").iterdir())) == 1

    def test_images_keep_upload_order(self, db, authority, make_project, tmp_path):
        service = ProjectService(db, storage=LocalObjectStorage(root=str(tmp_path), base_url="/u"))
        project = make_project(authority)
        service.add_attachment(project.id, authority, "image", "north.jpg", b"1")
        updated = service.add_attachment(project.id, authority, "image", "south.jpg", b"2")
        assert [i["name"] for i in updated.images] == ["north.jpg", "south.jpg"]

    def test_unknown_kind(self, db, authority, make_project, tmp_path):
        service = ProjectService(db, storage=LocalObjectStorage(root=str(tmp_path)))
        with pytest.raises(IncompleteData):
            service.add_attachment(make_project(authority).id, authority, "video", "a.mp4", b"")

    def test_storage_failure_leaves_project_unchanged(self, db, authority, make_project):
        project = make_project(authority)
        with pytest.raises(DependencyFailure):
            ProjectService(db, storage=FailingStorage()).add_attachment(
                project.id, authority, "document", "a.pdf", b"x"
            )
        db.refresh(project)
        assert project.documents == []

    def test_concurrent_edit_conflicts(self, db, session_factory, authority, make_project, tmp_path):
        """The append is rejected if the row changed after it was read."""
        files = tmp_path / "files"
        storage = LocalObjectStorage(root=str(files), base_url="/u")
        project = make_project(authority)

        other = session_factory()
        try:
            other_owner = other.query(UserDB).filter(UserDB.id == authority.id).one()
            stale_service = ProjectService(other, storage=storage)
            stale = stale_service._get(project.id)  # held so the pre-edit updated_at stays in the identity map

            ProjectService(db).update_project(project.id, {"name": "Changed"}, authority)

            with pytest.raises(Conflict):
                stale_service.add_attachment(project.id, other_owner, "document", "a.pdf", b"x")
        finally:
            other.close()

        assert list(files.iterdir()) == []
        db.refresh(project)
        assert project.name == "Changed"
        assert project.documents == []


class TestDeleteProject:

    def test_owner_deletes_with_dependents(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.REJECTED)
        db.add(VerificationReportDB(
            id="r1", project_id=project.id, officer_id=officer.id,
            measured_area=1, plot_count=1, sampling_flights=1, measured_biomass=1,
            uncertainty_pct=1, recommended_credits=0, decision=ReportDecision.REJECT,
        ))
        db.commit()
        project_id = project.id

        cascade = ProjectService(db).delete_project(project_id, authority)

        assert cascade["projects"] == 1
        assert cascade["verification_reports"] == 1
        assert db.query(ProjectDB).filter(ProjectDB.id == project_id).count() == 0
        assert db.query(ProjectEventDB).filter(ProjectEventDB.project_id == project_id).count() == 0

    def test_verified_projects_are_kept(self, db, admin, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.APPROVED)
        with pytest.raises(InvalidState):
            ProjectService(db).delete_project(project.id, admin)

    def test_non_owner_cannot_delete(self, db, authority, make_user, make_project):
        stranger = make_user(UserRole.PROJECT_AUTHORITY)
        project = make_project(authority)
        with pytest.raises(NotOwner):
            ProjectService(db).delete_project(project.id, stranger)

    def test_officer_cannot_delete(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer)
        with pytest.raises(Unauthorized):
            ProjectService(db).delete_project(project.id, officer)
