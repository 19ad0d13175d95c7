"""HTTP host for escrow instances.

Endpoints (JSON in, JSON out; addresses are hex strings):

    POST /escrows                    {buyer, seller, mediator, deadline}
    GET  /escrows/{id}
    POST /escrows/{id}/deposit       {caller, value}
    POST /escrows/{id}/approve       {caller}
    POST /escrows/{id}/refund        {caller}
    GET  /escrows/{id}/events
    GET  /ledger/{address}
    POST /ledger/{address}/credit    {amount}   (only with `ledger_credit` enabled)

Every response carries `success`; failures add `error` (the error code name)
and `message`. Time always comes from the host clock; request bodies cannot
set it. The credit endpoint mints balance without authentication and is meant
for development and test hosts.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from .codec import event_to_json, hex_to_address, state_to_json
from .collaborators import Clock, InMemoryLedger, LoggingEventSink
from .config import EscrowConfig
from .errors import ErrorCategory, ErrorCode, EscrowError
from .registry import EscrowRegistry
from .state_digest import compute_state_digest
from .state_machine import EscrowStateMachine

logger = logging.getLogger(__name__)

_STATUS_BY_CATEGORY = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.RESOURCE: 502,
    ErrorCategory.STATE: 409,
    ErrorCategory.INTERNAL: 500,
}

REGISTRY_KEY = web.AppKey("registry", EscrowRegistry)
LEDGER_KEY = web.AppKey("ledger", InMemoryLedger)


def status_for(code: ErrorCode) -> int:
    if code == ErrorCode.INSTANCE_NOT_FOUND:
        return 404
    return _STATUS_BY_CATEGORY.get(code.category, 500)


@web.middleware
async def error_middleware(
    request: web.Request, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]
) -> web.StreamResponse:
    try:
        return await handler(request)
    except EscrowError as exc:
        logger.info("%s %s -> %s", request.method, request.path, exc)
        return web.json_response(
            {"success": False, "error": exc.code.name, "message": exc.message},
            status=status_for(exc.code),
        )


async def _body(request: web.Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except json.JSONDecodeError as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "request body must be JSON") from exc
    if not isinstance(data, dict):
        raise EscrowError(ErrorCode.INVALID_FORMAT, "request body must be an object")
    return data


def _optional_int(data: dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise EscrowError(ErrorCode.INVALID_FORMAT, f"{key} must be an integer")
    return value


def _escrow_id(request: web.Request) -> bytes:
    raw = request.match_info["escrow_id"]
    try:
        return bytes.fromhex(raw)
    except ValueError as exc:
        raise EscrowError(ErrorCode.INVALID_FORMAT, "escrow id must be hex") from exc


def _view(escrow_id: bytes, machine: EscrowStateMachine) -> dict[str, Any]:
    state = state_to_json(machine.snapshot())
    return {
        "success": True,
        "escrow_id": escrow_id.hex(),
        "state": state,
        "approvals_remaining": machine.approvals_remaining(),
        "state_digest": compute_state_digest(state),
    }


async def create_escrow(request: web.Request) -> web.Response:
    registry = request.app[REGISTRY_KEY]
    data = await _body(request)
    deadline = _optional_int(data, "deadline")
    if deadline is None:
        raise EscrowError(ErrorCode.INVALID_DEADLINE, "deadline required")
    escrow_id, machine = registry.create(
        hex_to_address(data.get("buyer"), "buyer"),
        hex_to_address(data.get("seller"), "seller"),
        hex_to_address(data.get("mediator"), "mediator"),
        deadline,
    )
    return web.json_response(_view(escrow_id, machine), status=201)


async def get_escrow(request: web.Request) -> web.Response:
    escrow_id = _escrow_id(request)
    machine = request.app[REGISTRY_KEY].get(escrow_id)
    return web.json_response(_view(escrow_id, machine))


async def deposit(request: web.Request) -> web.Response:
    escrow_id = _escrow_id(request)
    machine = request.app[REGISTRY_KEY].get(escrow_id)
    data = await _body(request)
    value = _optional_int(data, "value")
    machine.deposit(hex_to_address(data.get("caller"), "caller"), value or 0)
    return web.json_response(_view(escrow_id, machine))


async def approve(request: web.Request) -> web.Response:
    escrow_id = _escrow_id(request)
    machine = request.app[REGISTRY_KEY].get(escrow_id)
    data = await _body(request)
    machine.approve_release(hex_to_address(data.get("caller"), "caller"))
    return web.json_response(_view(escrow_id, machine))


async def refund(request: web.Request) -> web.Response:
    escrow_id = _escrow_id(request)
    machine = request.app[REGISTRY_KEY].get(escrow_id)
    data = await _body(request)
    machine.refund_if_deadline_passed(hex_to_address(data.get("caller"), "caller"))
    return web.json_response(_view(escrow_id, machine))


async def list_events(request: web.Request) -> web.Response:
    escrow_id = _escrow_id(request)
    events = request.app[REGISTRY_KEY].events_for(escrow_id)
    return web.json_response({"success": True, "events": [event_to_json(e) for e in events]})


async def ledger_balance(request: web.Request) -> web.Response:
    address = hex_to_address(request.match_info["address"])
    ledger = request.app[LEDGER_KEY]
    return web.json_response(
        {"success": True, "address": address.hex(), "balance": ledger.balance_of(address)}
    )


async def ledger_credit(request: web.Request) -> web.Response:
    address = hex_to_address(request.match_info["address"])
    data = await _body(request)
    amount = _optional_int(data, "amount")
    if amount is None or amount <= 0:
        raise EscrowError(ErrorCode.ZERO_VALUE, "credit amount must be > 0")
    ledger = request.app[LEDGER_KEY]
    ledger.credit(address, amount)
    return web.json_response(
        {"success": True, "address": address.hex(), "balance": ledger.balance_of(address)}
    )


def create_app(
    ledger: Optional[InMemoryLedger] = None,
    clock: Optional[Clock] = None,
    config: Optional[EscrowConfig] = None,
) -> web.Application:
    ledger = ledger if ledger is not None else InMemoryLedger()
    registry = EscrowRegistry(ledger, clock=clock, events=LoggingEventSink(), config=config)

    app = web.Application(middlewares=[error_middleware])
    app[REGISTRY_KEY] = registry
    app[LEDGER_KEY] = ledger
    app.router.add_post("/escrows", create_escrow)
    app.router.add_get("/escrows/{escrow_id}", get_escrow)
    app.router.add_post("/escrows/{escrow_id}/deposit", deposit)
    app.router.add_post("/escrows/{escrow_id}/approve", approve)
    app.router.add_post("/escrows/{escrow_id}/refund", refund)
    app.router.add_get("/escrows/{escrow_id}/events", list_events)
    app.router.add_get("/ledger/{address}", ledger_balance)
    if registry.config.ledger_credit:
        app.router.add_post("/ledger/{address}/credit", ledger_credit)
    return app


def serve(config: EscrowConfig, ledger: Optional[InMemoryLedger] = None) -> None:
    app = create_app(ledger=ledger, config=config)
    logger.info("serving escrows on %s:%d", config.host, config.port)
    web.run_app(app, host=config.host, port=config.port, print=None)
