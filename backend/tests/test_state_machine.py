"""
Tests for the project lifecycle state machine.

PENDING → IN_VERIFICATION → APPROVED | REJECTED, terminal states final,
derived statuses always consistent.
"""
import pytest

from app.models.db_models import (
    LifecycleStatus, ProjectDB, ProjectEventDB, ProjectState, ReportDecision, UserDB, UserRole,
    VerificationStatus,
    LIFECYCLE_STATUS_BY_STATE, VERIFICATION_STATUS_BY_STATE,
)
from app.services.errors import (
    AlreadyStarted, InvalidState, NotAssigned, NotInProgress, ReportAlreadyExists,
)
from app.services.workflow import ProjectStateMachine, STATE_CONFIG


class TestStateConfig:
    """Static transition table."""

    def test_terminal_states(self, db):
        machine = ProjectStateMachine(db)
        assert machine.is_terminal_state(ProjectState.APPROVED)
        assert machine.is_terminal_state(ProjectState.REJECTED)
        assert not machine.is_terminal_state(ProjectState.PENDING)

    def test_allowed_transitions(self, db):
        machine = ProjectStateMachine(db)
        assert machine.can_transition(ProjectState.PENDING, ProjectState.IN_VERIFICATION)[0]
        assert machine.get_next_states(ProjectState.IN_VERIFICATION) == [
            ProjectState.APPROVED, ProjectState.REJECTED,
        ]
        allowed, reason = machine.can_transition(ProjectState.APPROVED, ProjectState.PENDING)
        assert not allowed
        assert "approved" in reason

    def test_no_skipping_verification(self, db):
        allowed, _ = ProjectStateMachine(db).can_transition(ProjectState.PENDING, ProjectState.APPROVED)
        assert not allowed

    def test_every_state_configured(self):
        assert set(STATE_CONFIG) == set(ProjectState)

    def test_derived_statuses_are_consistent(self):
        """verified ⇒ approved and rejected ⇒ rejected, for every state."""
        for state in ProjectState:
            verification = VERIFICATION_STATUS_BY_STATE[state]
            lifecycle = LIFECYCLE_STATUS_BY_STATE[state]
            if verification == VerificationStatus.VERIFIED:
                assert lifecycle == LifecycleStatus.APPROVED
            if verification == VerificationStatus.REJECTED:
                assert lifecycle == LifecycleStatus.REJECTED


class TestStartVerification:
    """pending → in_progress by the assigned officer only."""

    def test_assigned_officer_starts(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer)
        started = ProjectStateMachine(db).start_verification(project, officer)

        assert started.state == ProjectState.IN_VERIFICATION
        assert started.verification_status == VerificationStatus.IN_PROGRESS
        assert started.lifecycle_status == LifecycleStatus.PENDING
        assert started.verification_started_at is not None

        transitions = db.query(ProjectEventDB).filter(
            ProjectEventDB.project_id == project.id,
            ProjectEventDB.event_type == "state_transition",
        ).all()
        assert len(transitions) == 1
        assert transitions[0].from_state == ProjectState.PENDING
        assert transitions[0].to_state == ProjectState.IN_VERIFICATION

    def test_unassigned_project_fails(self, db, authority, officer, make_project):
        """No assigned officer always fails with NotAssigned."""
        project = make_project(authority)
        with pytest.raises(NotAssigned):
            ProjectStateMachine(db).start_verification(project, officer)

    def test_other_officer_fails(self, db, authority, officer, make_user, make_project):
        other = make_user(UserRole.OFFICER, jurisdiction="Delhi")
        project = make_project(authority, officer=officer)
        with pytest.raises(NotAssigned):
            ProjectStateMachine(db).start_verification(project, other)

    def test_second_start_fails(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer)
        machine = ProjectStateMachine(db)
        machine.start_verification(project, officer)
        with pytest.raises(AlreadyStarted):
            machine.start_verification(project, officer)

    def test_concurrent_start_loses_cleanly(self, session_factory, authority, officer, make_project):
        """A stale read that lost the conditional update reports AlreadyStarted."""
        project_id, officer_id = make_project(authority, officer=officer).id, officer.id
        first, second = session_factory(), session_factory()
        try:
            stale_project = second.query(ProjectDB).filter(ProjectDB.id == project_id).one()
            stale_officer = second.query(UserDB).filter(UserDB.id == officer_id).one()

            ProjectStateMachine(first).start_verification(
                first.query(ProjectDB).filter(ProjectDB.id == project_id).one(),
                first.query(UserDB).filter(UserDB.id == officer_id).one(),
            )
            with pytest.raises(AlreadyStarted):
                ProjectStateMachine(second).start_verification(stale_project, stale_officer)
        finally:
            first.close()
            second.close()


class TestRecordDecision:
    """in_progress → verified | rejected."""

    def test_requires_in_progress(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer)
        with pytest.raises(NotInProgress):
            ProjectStateMachine(db).record_decision(project, ReportDecision.APPROVE, officer.id)

    def test_terminal_state_is_final(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.APPROVED)
        with pytest.raises(InvalidState):
            ProjectStateMachine(db).record_decision(project, ReportDecision.REJECT, officer.id)

    def test_approve_sets_both_axes(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        new_state = ProjectStateMachine(db).record_decision(project, ReportDecision.APPROVE, officer.id)
        db.commit()
        db.refresh(project)

        assert new_state == ProjectState.APPROVED
        assert project.verification_status == VerificationStatus.VERIFIED
        assert project.lifecycle_status == LifecycleStatus.APPROVED
        assert project.decided_by == officer.id

    def test_reject_sets_both_axes(self, db, authority, officer, make_project):
        project = make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        ProjectStateMachine(db).record_decision(project, ReportDecision.REJECT, officer.id)
        db.commit()
        db.refresh(project)

        assert project.verification_status == VerificationStatus.REJECTED
        assert project.lifecycle_status == LifecycleStatus.REJECTED

    def test_lost_race_reports_existing_decision(self, db, authority, officer, make_project):
        """In-memory state says in progress but the row already moved."""
        project = make_project(authority, officer=officer, state=ProjectState.IN_VERIFICATION)
        machine = ProjectStateMachine(db)
        machine.record_decision(project, ReportDecision.APPROVE, officer.id)
        with pytest.raises(ReportAlreadyExists):
            machine.record_decision(project, ReportDecision.REJECT, officer.id)
        db.rollback()
