from residuals.schemas.participants import Participant
from residuals.services.participant_normalizer import (
    matches_identifier,
    normalize_participant,
    normalize_participants,
)


def test_canonical_shape_passes_through():
    p = {"partner_airtable_id": "rec1", "partner_name": "Ann", "partner_role": "Agent", "split_pct": 60}
    assert normalize_participant(p) == {
        "partner_airtable_id": "rec1",
        "partner_name": "Ann",
        "partner_role": "Agent",
        "split_pct": 60.0,
    }


def test_legacy_agent_shape():
    out = normalize_participant({"agent_id": "recA", "name": "Bob", "split": "25.5"})
    assert out == {"partner_airtable_id": "recA", "partner_name": "Bob", "partner_role": "Partner", "split_pct": 25.5}


def test_canonical_field_wins_over_legacy():
    out = normalize_participant({"partner_id": "old", "partner_airtable_id": "new", "agent_id": "older"})
    assert out["partner_airtable_id"] == "new"


def test_partner_id_preferred_over_agent_id():
    out = normalize_participant({"agent_id": "older", "partner_id": "old"})
    assert out["partner_airtable_id"] == "old"


def test_blank_canonical_falls_back_to_legacy():
    out = normalize_participant({"partner_name": "  ", "name": "Legacy Name", "role": "Fund"})
    assert out["partner_name"] == "Legacy Name"
    assert out["partner_role"] == "Fund"


def test_non_numeric_split_defaults_to_zero():
    assert normalize_participant({"partner_id": "x", "split_pct": "n/a"})["split_pct"] == 0.0
    assert normalize_participant({"partner_id": "x"})["split_pct"] == 0.0


def test_normalization_is_idempotent():
    shapes = [
        {"agent_id": "a", "name": "A", "split": 10},
        {"partner_id": "b", "role": "Fund", "split_pct": "20"},
        {"partner_airtable_id": "c", "partner_name": "C", "partner_role": "Company", "split_pct": 70},
        {},
    ]
    for s in shapes:
        once = normalize_participant(s)
        assert normalize_participant(once) == once


def test_normalize_participants_skips_non_mappings():
    out = normalize_participants([{"partner_id": "a"}, "junk", None])
    assert len(out) == 1


def test_matches_identifier_checks_every_legacy_field():
    assert matches_identifier({"agent_id": "rec9"}, "rec9")
    assert matches_identifier({"partner_id": "rec9"}, "rec9")
    assert not matches_identifier({"partner_airtable_id": "rec8"}, "rec9")


def test_participant_schema_normalizes_on_input():
    p = Participant.model_validate({"agent_id": "recZ", "name": "Zed", "split": 12})
    assert p.partner_airtable_id == "recZ"
    assert p.partner_name == "Zed"
    assert p.partner_role == "Partner"
    assert p.split_pct == 12.0
