import logging

from residuals.api.deps import http_error
from residuals.core.errors import ExternalServiceError, NotFoundError, PersistenceError, ValidationError
from residuals.core.hashing import row_hash
from residuals.core.logging import RequestIdFilter, bind_request_id, reset_request_id
from residuals.core.mid import normalize_mid, prefixed_sibling


def test_normalize_mid_keeps_leading_zeros():
    assert normalize_mid(" 00-1234 56 ") == "00123456"
    assert normalize_mid(None) == ""
    assert normalize_mid(22660744) == "22660744"
    assert prefixed_sibling("22660744") == "0022660744"


def test_row_hash_ignores_key_order():
    assert row_hash({"MID": "1", "Fees": "2"}) == row_hash({"Fees": "2", "MID": "1"})
    assert row_hash({"MID": "1", "Fees": "2"}) != row_hash({"MID": "1", "Fees": "3"})


def test_http_error_mapping():
    bad = http_error(ValidationError("Total split off", details={"total_split": 70.0}))
    assert bad.status_code == 400
    assert bad.detail == {"message": "Total split off", "total_split": 70.0}
    assert http_error(ValidationError("plain")).detail == "plain"
    assert http_error(NotFoundError("Deal not found")).status_code == 404
    assert http_error(ExternalServiceError("down", 503)).status_code == 502
    assert http_error(PersistenceError("disk full")).status_code == 500


def _record(**extra):
    rec = logging.LogRecord("t", logging.INFO, __file__, 1, "msg", None, None)
    rec.__dict__.update(extra)
    return rec


def test_request_id_filter_uses_bound_id():
    token = bind_request_id("req-9")
    try:
        rec = _record()
        RequestIdFilter().filter(rec)
        assert rec.request_id == "req-9"

        explicit = _record(request_id="req-explicit")
        RequestIdFilter().filter(explicit)
        assert explicit.request_id == "req-explicit"
    finally:
        reset_request_id(token)

    rec = _record()
    RequestIdFilter().filter(rec)
    assert rec.request_id is None


def test_maintenance_cli_defaults_to_dry_run():
    from residuals.maintenance import build_parser

    args = build_parser().parse_args(["repair-duplicate-mids", "--step", "count"])
    assert (args.command, args.step, args.commit) == ("repair-duplicate-mids", "count", False)
    assert build_parser().parse_args(["repair-duplicate-mids", "--commit"]).step == "all"
