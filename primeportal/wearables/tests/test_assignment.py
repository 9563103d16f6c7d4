"""Tests for doctor auto-assignment on an athlete's first sync."""

from __future__ import annotations

import logging
from uuid import UUID

import pytest

from primeportal.errors import UpstreamFailure
from primeportal.wearables.sync.assignment import auto_assign_doctor, parse_doctor_id
from primeportal.wearables.tests.conftest import TEST_USER_ID, InMemorySyncStore

FIRST_DOCTOR = UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
DEFAULT_DOCTOR = UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")


@pytest.fixture
def store() -> InMemorySyncStore:
    store = InMemorySyncStore()
    store.roles[TEST_USER_ID] = "athlete"
    store.doctors.append(FIRST_DOCTOR)
    return store


class TestAutoAssign:
    async def test_assigns_first_doctor_with_thresholds(self, store: InMemorySyncStore) -> None:
        result = await auto_assign_doctor(store, TEST_USER_ID)

        assert result.relationship_created is True
        assert result.thresholds_created is True
        assert result.doctor_id == FIRST_DOCTOR
        assert store.relationships == {(FIRST_DOCTOR, TEST_USER_ID)}
        assert len(store.thresholds) == 10

    async def test_default_doctor_preferred(self, store: InMemorySyncStore) -> None:
        result = await auto_assign_doctor(store, TEST_USER_ID, DEFAULT_DOCTOR)

        assert result.doctor_id == DEFAULT_DOCTOR
        assert store.relationships == {(DEFAULT_DOCTOR, TEST_USER_ID)}

    async def test_non_athlete_skipped(self, store: InMemorySyncStore) -> None:
        store.roles[TEST_USER_ID] = "doctor"

        result = await auto_assign_doctor(store, TEST_USER_ID)

        assert result.skipped == "not an athlete"
        assert store.relationships == set()

    async def test_missing_profile_skipped(self) -> None:
        result = await auto_assign_doctor(InMemorySyncStore(), TEST_USER_ID)
        assert result.skipped == "not an athlete"

    async def test_no_doctor_available(self, store: InMemorySyncStore) -> None:
        store.doctors.clear()

        result = await auto_assign_doctor(store, TEST_USER_ID)

        assert result.skipped == "no doctor available"
        assert result.relationship_created is False

    async def test_existing_relationship_left_alone(self, store: InMemorySyncStore) -> None:
        store.relationships.add((FIRST_DOCTOR, TEST_USER_ID))

        result = await auto_assign_doctor(store, TEST_USER_ID)

        assert result.skipped == "already assigned"
        assert store.thresholds == []

    async def test_threshold_failure_keeps_relationship(
        self, store: InMemorySyncStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        async def fail(thresholds) -> None:
            raise UpstreamFailure("Database request failed")

        monkeypatch.setattr(store, "create_thresholds", fail)

        result = await auto_assign_doctor(store, TEST_USER_ID)

        assert result.relationship_created is True
        assert result.thresholds_created is False
        assert store.relationships == {(FIRST_DOCTOR, TEST_USER_ID)}


class TestParseDoctorId:
    def test_valid(self) -> None:
        assert parse_doctor_id(f" {DEFAULT_DOCTOR} ") == DEFAULT_DOCTOR

    def test_unset(self) -> None:
        assert parse_doctor_id(None) is None
        assert parse_doctor_id("") is None

    def test_invalid_logged_and_ignored(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR, logger="primeportal.wearables.sync.assignment"):
            assert parse_doctor_id("not-a-uuid") is None
        assert "DEFAULT_DOCTOR_ID" in caplog.text
