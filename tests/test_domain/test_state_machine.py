"""Tests for the JobStateMachine domain guard.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience function validate_transition works.
    4. Review outcomes (revision, release) and cancellation behave correctly.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from keywork.domain.enums import JobStatus
from keywork.domain.state_machine import (
    REQUIRED_STATUS,
    JobStateMachine,
    validate_transition,
)


class TestHappyPath:
    """Test the full happy-path lifecycle: available -> completed."""

    def test_full_lifecycle(self) -> None:
        sm = JobStateMachine("available")
        assert sm.status == "available"

        sm.accept()
        assert sm.status == "assigned"

        sm.begin_work()
        assert sm.status == "in_progress"

        sm.submit()
        assert sm.status == "submitted"

        sm.approve()
        assert sm.status == "completed"

    def test_default_status_is_available(self) -> None:
        assert JobStateMachine().status == JobStatus.AVAILABLE


class TestReviewPath:
    """Test what an agent can do with submitted work."""

    def test_request_revision_returns_to_worker(self) -> None:
        sm = JobStateMachine("submitted")
        sm.request_revision()
        assert sm.status == "in_progress"

        # The same worker can submit again
        sm.submit()
        assert sm.status == "submitted"

    def test_release_to_pool(self) -> None:
        sm = JobStateMachine("submitted")
        sm.release_to_pool()
        assert sm.status == "available"

        sm.accept()
        assert sm.status == "assigned"


class TestCancellation:
    @pytest.mark.parametrize("status", ["available", "assigned", "in_progress"])
    def test_cancel_before_submission(self, status: str) -> None:
        sm = JobStateMachine(status)
        sm.cancel()
        assert sm.status == "cancelled"

    def test_submitted_cannot_be_cancelled(self) -> None:
        sm = JobStateMachine("submitted")
        with pytest.raises(TransitionNotAllowed):
            sm.cancel()


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_available_to_completed(self) -> None:
        sm = JobStateMachine("available")
        with pytest.raises(TransitionNotAllowed):
            sm.approve()

    def test_assigned_cannot_submit(self) -> None:
        sm = JobStateMachine("assigned")
        with pytest.raises(TransitionNotAllowed):
            sm.submit()

    def test_in_progress_cannot_be_accepted_again(self) -> None:
        sm = JobStateMachine("in_progress")
        with pytest.raises(TransitionNotAllowed):
            sm.accept()

    def test_completed_is_final(self) -> None:
        sm = JobStateMachine("completed")
        assert sm.get_allowed_events() == []

    def test_cancelled_is_final(self) -> None:
        sm = JobStateMachine("cancelled")
        assert sm.get_allowed_events() == []


class TestAllowedEvents:
    """Test the get_allowed_events helper."""

    def test_available_allowed(self) -> None:
        allowed = JobStateMachine("available").get_allowed_events()
        assert set(allowed) == {"accept", "cancel"}

    def test_in_progress_allowed(self) -> None:
        allowed = JobStateMachine("in_progress").get_allowed_events()
        assert set(allowed) == {"submit", "cancel"}

    def test_submitted_allowed(self) -> None:
        allowed = JobStateMachine("submitted").get_allowed_events()
        assert set(allowed) == {"approve", "request_revision", "release_to_pool"}


class TestRequiredStatus:
    def test_every_event_has_required_status(self) -> None:
        for event, statuses in REQUIRED_STATUS.items():
            for status in statuses:
                sm = JobStateMachine(status.value)
                assert event in sm.get_allowed_events()


class TestValidateTransitionFunction:
    """Test the convenience function."""

    def test_valid_transition(self) -> None:
        assert validate_transition("assigned", "begin_work") == "in_progress"

    def test_illegal_transition(self) -> None:
        with pytest.raises(TransitionNotAllowed):
            validate_transition("completed", "approve")

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("available", "nonexistent_event")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            JobStateMachine("INVALID_STATUS")
