"""Shared escrow fixtures and scenario case collection."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable

import pytest

from quorum_escrow.accounts import BUYER, MEDIATOR, SELLER
from quorum_escrow.collaborators import InMemoryLedger, ListEventSink, ManualClock
from quorum_escrow.scenario import ScenarioReport, run_scenario
from quorum_escrow.state_machine import EscrowStateMachine

START = 1_000
DEADLINE = 2_000
OPENING_BALANCE = 1_000

_SCENARIO_CASES: dict[str, list[dict[str, Any]]] = {}


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--output",
        action="store",
        default=None,
        help="Output directory for generated scenario fixtures",
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger({BUYER: OPENING_BALANCE})


@pytest.fixture
def sink() -> ListEventSink:
    return ListEventSink()


@pytest.fixture
def escrow(clock: ManualClock, ledger: InMemoryLedger, sink: ListEventSink) -> EscrowStateMachine:
    """A fresh escrow in AWAITING_DEPOSIT."""
    return EscrowStateMachine.create(
        BUYER, SELLER, MEDIATOR, DEADLINE, custody=ledger, clock=clock, events=sink
    )


@pytest.fixture
def funded(escrow: EscrowStateMachine) -> EscrowStateMachine:
    """The `escrow` fixture after the buyer deposited 100."""
    escrow.deposit(BUYER, 100)
    return escrow


@pytest.fixture
def scenario_case() -> Callable[[str, str, dict[str, Any]], ScenarioReport]:
    """Run a scenario document and record it under a fixture path."""

    def _scenario_case(rel_path: str, name: str, document: dict[str, Any]) -> ScenarioReport:
        report = run_scenario(document)
        _SCENARIO_CASES.setdefault(rel_path, []).append(
            {"name": name, "scenario": document, "expected": report.to_json()}
        )
        return report

    return _scenario_case


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    output_dir = session.config.getoption("--output")
    if not output_dir:
        return

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    for rel_path, cases in _SCENARIO_CASES.items():
        if not cases:
            continue
        target = out / rel_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps({"cases": cases}, indent=2))
