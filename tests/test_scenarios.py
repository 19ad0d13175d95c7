"""End-to-end escrow scenarios (recorded as fixtures with --output)."""

from __future__ import annotations

import pytest

from quorum_escrow.errors import ErrorCode, EscrowError
from quorum_escrow.scenario import run_scenario
from quorum_escrow.state_digest import compute_state_digest


def _doc(*steps: dict, **extra) -> dict:
    doc = {
        "start": 1_000,
        "deadline": 2_000,
        "parties": {"buyer": "buyer", "seller": "seller", "mediator": "mediator"},
        "balances": {"buyer": 100},
        "steps": list(steps),
    }
    doc.update(extra)
    return doc


def test_release_by_seller_and_mediator(scenario_case) -> None:
    report = scenario_case(
        "scenarios/release.json",
        "release_by_seller_and_mediator",
        _doc(
            {"op": "deposit", "caller": "buyer", "value": 100},
            {"op": "approve", "caller": "seller"},
            {"op": "approve", "caller": "mediator"},
        ),
    )
    assert report.ok
    assert report.final_state["lifecycle_state"] == "released"
    assert report.balances == {"buyer": 0, "seller": 100}
    assert report.custody == 0
    assert [e["kind"] for e in report.events] == ["deposited", "approved", "approved", "released"]
    assert report.events[-1]["amount"] == 100


def test_refund_after_single_buyer_approval(scenario_case) -> None:
    report = scenario_case(
        "scenarios/refund.json",
        "refund_after_single_buyer_approval",
        _doc(
            {"op": "deposit", "caller": "buyer", "value": 100},
            {"op": "approve", "caller": "buyer"},
            {"op": "advance", "seconds": 1_001},
            {"op": "refund", "caller": "buyer"},
        ),
    )
    assert report.ok
    assert report.final_state["lifecycle_state"] == "refunded"
    assert report.balances["buyer"] == 100


def test_late_second_approval_still_releases(scenario_case) -> None:
    report = scenario_case(
        "scenarios/release.json",
        "late_second_approval_still_releases",
        _doc(
            {"op": "deposit", "caller": "buyer", "value": 100},
            {"op": "approve", "caller": "seller"},
            {"op": "advance", "seconds": 5_000},
            {"op": "approve", "caller": "mediator"},
            {"op": "refund", "caller": "buyer"},
        ),
    )
    assert [s.result.ok for s in report.steps] == [True, True, True, True, False]
    assert report.steps[-1].result.error.code == ErrorCode.WRONG_STATE
    assert report.final_state["lifecycle_state"] == "released"
    assert report.balances["seller"] == 100


def test_failed_payout_then_third_approval(scenario_case) -> None:
    report = scenario_case(
        "scenarios/transfer_failure.json",
        "failed_payout_then_third_approval",
        _doc(
            {"op": "deposit", "caller": "buyer", "value": 100},
            {"op": "approve", "caller": "seller"},
            {"op": "approve", "caller": "mediator"},
            {"op": "restore_transfers", "to": "seller"},
            {"op": "approve", "caller": "buyer"},
            failing=["seller"],
        ),
    )
    outcomes = [s.result.to_json() for s in report.steps]
    assert outcomes[2] == {"ok": False, "error": "TRANSFER_FAILED"}
    assert outcomes[4] == {"ok": True, "error": None}
    assert report.final_state["approval_count"] == 3
    assert report.final_state["lifecycle_state"] == "released"
    assert report.balances["seller"] == 100


def test_invalid_deadline_reported(scenario_case) -> None:
    report = scenario_case("scenarios/create.json", "deadline_in_past", _doc(deadline=500))
    assert report.create_error == "INVALID_DEADLINE"
    assert not report.ok
    assert report.final_state is None


def test_report_digest_matches_final_state() -> None:
    report = run_scenario(_doc({"op": "deposit", "caller": "buyer", "value": 40}))
    assert report.digest == compute_state_digest(report.final_state)
    assert len(report.digest) == 64


def test_unknown_op_is_format_error() -> None:
    with pytest.raises(EscrowError) as exc:
        run_scenario(_doc({"op": "cancel", "caller": "buyer"}))
    assert exc.value.code == ErrorCode.INVALID_FORMAT


def test_missing_step_field_is_format_error() -> None:
    with pytest.raises(EscrowError) as exc:
        run_scenario(_doc({"op": "deposit", "caller": "buyer"}))
    assert exc.value.code == ErrorCode.INVALID_FORMAT


@pytest.mark.parametrize(
    "extra",
    [
        {"start": "dawn"},
        {"deadline": [2_000]},
        {"balances": {"buyer": "plenty"}},
        {"balances": ["buyer"]},
        {"failing": "seller"},
        {"parties": {"buyer": 7}},
    ],
)
def test_malformed_document_is_format_error(extra: dict) -> None:
    with pytest.raises(EscrowError) as exc:
        run_scenario(_doc(**extra))
    assert exc.value.code == ErrorCode.INVALID_FORMAT


@pytest.mark.parametrize(
    "step",
    [
        {"op": "advance", "seconds": "later"},
        {"op": "set_time", "at": None},
        {"op": "refund", "caller": "buyer", "now": "soon"},
        {"op": "approve", "caller": None},
    ],
)
def test_malformed_step_is_format_error(step: dict) -> None:
    with pytest.raises(EscrowError) as exc:
        run_scenario(_doc(step))
    assert exc.value.code == ErrorCode.INVALID_FORMAT
