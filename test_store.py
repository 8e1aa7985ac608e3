"""
Carpool - Store & Persistence Tests
Run: pytest test_store.py

The Neo4j session is replaced by a recorder, so these tests check which
statements run and with what parameters.
"""
from contextlib import contextmanager

import pytest
from neo4j.exceptions import ServiceUnavailable

from app.members import store
from app.compute import persistence as persistence_module
from app.compute.persistence import ScorePersistence


class FakeResult:
    def __init__(self, record):
        self._record = record

    def single(self):
        return self._record


class FakeSession:
    def __init__(self, record=None, error=None):
        self.record = record
        self.error = error
        self.runs = []

    def run(self, query, **params):
        if self.error:
            raise self.error
        self.runs.append((query, params))
        return FakeResult(self.record)


@pytest.fixture
def session(monkeypatch):
    fake = FakeSession()

    @contextmanager
    def get_session():
        yield fake
    monkeypatch.setattr(store, "get_session", get_session)
    monkeypatch.setattr(persistence_module, "get_session", get_session)
    return fake


SCORE = {
    "score": 85,
    "tier": "excellent",
    "is_complete": True,
    "categories": [{"key": "email", "earned": 10, "cap": 10}],
    "engine_version": "1.0.0",
    "calculated_at": "2026-03-15T12:00:00+00:00",
}


# ── Score Persistence ─────────────────────────────────────

def test_score_and_profile_written_in_one_statement(session):
    session.record = {"score_id": "ignored"}

    score_id = ScorePersistence().save_score("u1", SCORE)

    assert score_id.startswith("score_")
    assert len(session.runs) == 1
    query, params = session.runs[0]
    assert "CREATE (s:ScoreRecord" in query
    assert "u.trust_score = $score" in query
    assert "u.trust_score_updated_at = $calculated_at" in query
    assert params["score"] == 85
    assert params["calculated_at"] == "2026-03-15T12:00:00+00:00"


def test_score_for_missing_member_not_saved(session):
    session.record = None
    with pytest.raises(store.MemberNotFoundError):
        ScorePersistence().save_score("u_gone", SCORE)


def test_score_persist_driver_error(session):
    session.error = ServiceUnavailable("connection refused")
    with pytest.raises(store.StoreUnavailableError):
        ScorePersistence().save_score("u1", SCORE)


# ── Phone ─────────────────────────────────────────────────

def test_changing_phone_resets_verification(session):
    session.record = {"user": {"id": "u1", "phone": "+15550199", "phone_verified": False}, "changed": True}

    profile = store.update_phone("u1", "+15550199")

    query, params = session.runs[0]
    assert params["phone"] == "+15550199"
    assert "u.phone_verified = CASE WHEN changed THEN false" in query
    assert profile.phone == "+15550199"
    assert profile.phone_verified is False


@pytest.mark.parametrize("value", [None, ""])
def test_phone_can_be_cleared(session, value):
    session.record = {"user": {"id": "u1", "phone": None, "phone_verified": False}, "changed": True}

    profile = store.update_phone("u1", value)

    query, params = session.runs[0]
    assert params["phone"] is None
    assert "SET u.phone = $phone" in query
    assert "coalesce($phone, u.phone)" not in query
    assert profile.phone is None


def test_phone_update_for_missing_member(session):
    session.record = None
    with pytest.raises(store.MemberNotFoundError):
        store.update_phone("u_gone", "+15550199")


# ── Verification Flags ────────────────────────────────────

def test_verification_flags_written(session):
    session.record = {"user": {"id": "u1", "id_verified": True}}

    profile = store.update_verification_flags("u1", {"id_verified": True})

    assert session.runs[0][1]["flags"] == {"id_verified": True}
    assert profile.id_verified is True


def test_unknown_verification_flag_rejected(session):
    with pytest.raises(ValueError):
        store.update_verification_flags("u1", {"trust_score": True})
    assert session.runs == []


def test_store_driver_error_is_unavailable(session):
    session.error = ServiceUnavailable("connection refused")
    with pytest.raises(store.StoreUnavailableError):
        store.update_verification_flags("u1", {"profile_verified": True})
