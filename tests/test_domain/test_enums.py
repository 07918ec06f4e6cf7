"""Tests for domain enumerations."""

from __future__ import annotations

import pytest

from keywork.domain.enums import JobStatus, TrustLevel, WebhookEvent


class TestJobStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "available", "assigned", "in_progress",
            "submitted", "completed", "cancelled",
        }
        assert {s.value for s in JobStatus} == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(JobStatus.AVAILABLE, str)
        assert JobStatus.IN_PROGRESS == "in_progress"

    def test_terminal_statuses(self) -> None:
        terminal = {s for s in JobStatus if s.is_terminal}
        assert terminal == {JobStatus.COMPLETED, JobStatus.CANCELLED}


class TestTrustLevel:
    def test_ordering(self) -> None:
        assert TrustLevel.BASIC.rank < TrustLevel.VERIFIED.rank < TrustLevel.KYC_GOLD.rank

    @pytest.mark.parametrize(
        ("worker", "required", "allowed"),
        [
            (TrustLevel.BASIC, TrustLevel.BASIC, True),
            (TrustLevel.BASIC, TrustLevel.VERIFIED, False),
            (TrustLevel.VERIFIED, "basic", True),
            (TrustLevel.VERIFIED, "kyc_gold", False),
            (TrustLevel.KYC_GOLD, TrustLevel.VERIFIED, True),
        ],
    )
    def test_satisfies(self, worker: TrustLevel, required: str, allowed: bool) -> None:
        assert worker.satisfies(required) is allowed

    def test_at_least(self) -> None:
        assert TrustLevel.at_least("verified") == [TrustLevel.VERIFIED, TrustLevel.KYC_GOLD]
        assert TrustLevel.at_least(TrustLevel.BASIC) == list(TrustLevel)

    def test_unknown_tier_rejected(self) -> None:
        with pytest.raises(ValueError):
            TrustLevel.BASIC.satisfies("platinum")


class TestWebhookEvent:
    def test_dotted_names(self) -> None:
        assert WebhookEvent.JOB_CREATED == "job.created"
        assert all("." in event.value for event in WebhookEvent)
