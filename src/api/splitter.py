"""
Fee Splitter API Blueprint

REST endpoints for the splitter's commands and queries, plus the local
host controls (block clock and bank) used to drive it outside a real chain.

Every command body carries a ``sender``: the address the host attributes
the call to. Authorization decisions are made by the splitter against that
address.
"""

import logging

from flask import Blueprint, jsonify, request

from api.state import ServiceNotInitialized, get_service
from api.utils import (
    bad_request,
    error_response,
    json_body,
    require_api_key,
    validate_json_schema,
    validate_pagination_params,
)
from coins import coins_from_payload, coins_to_list
from fee_split_errors import FeeSplitError
from host import MessageInfo, validate_address

logger = logging.getLogger(__name__)

splitter_bp = Blueprint("splitter", __name__)


def _run(handler):
    """Call ``handler`` and translate failures into responses."""
    try:
        return handler()
    except FeeSplitError as e:
        return error_response(e)
    except ServiceNotInitialized as e:
        return jsonify({"error": "NotInitialized", "message": str(e)}), 503


def _info(data: dict, funds=None) -> MessageInfo:
    return MessageInfo(sender=validate_address(data.get("sender")), funds=tuple(funds or ()))


# =============================================================================
# Setup
# =============================================================================


@splitter_bp.route("/splitter/instantiate", methods=["POST"])
@require_api_key
def instantiate():
    """
    Create the splitter.

    Request body:
        {
            "gov_contract": "gov_addr",
            "allocations": [
                {"name": "a", "recipient": "alice_addr", "weight": 1,
                 "threshold": {"denom": "uluna", "amount": "0"},
                 "recipient_kind": "wallet"}
            ],
            "init_hook": {"contract_addr": "hook_addr", "msg": {...}},   // Optional
            "name": "protocol fees"                                      // Optional
        }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"gov_contract": str, "allocations": list},
        optional_fields={"init_hook": dict, "name": str},
    )
    if not is_valid:
        return bad_request(error)

    service = get_service()
    if service.initialized:
        return jsonify({"error": "AlreadyInstantiated",
                        "message": "Splitter is already instantiated"}), 409

    return _run(lambda: (jsonify(service.instantiate(data).to_dict()), 201))


# =============================================================================
# Deposit
# =============================================================================


@splitter_bp.route("/splitter/deposit", methods=["POST"])
@require_api_key
def deposit():
    """
    Deposit funds and optionally flush.

    Request body:
        {
            "sender": "payer_addr",
            "funds": [{"denom": "uluna", "amount": "1001"}],
            "flush": false
        }
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"sender": str},
        optional_fields={"funds": (list, dict), "flush": bool},
    )
    if not is_valid:
        return bad_request(error)

    def handler():
        funds = coins_from_payload(data.get("funds", []))
        info = _info(data, funds)
        result = get_service().execute(
            lambda splitter, env: splitter.deposit(env, info, flush=data.get("flush", False)),
            funds=funds,
        )
        return jsonify(result.to_dict())

    return _run(handler)


# =============================================================================
# Allocations
# =============================================================================


@splitter_bp.route("/splitter/allocations", methods=["POST"])
@require_api_key
def add_allocation():
    """
    Add an allocation entry (controller only).

    Request body:
        {
            "sender": "gov_addr",
            "name": "c",
            "recipient": "carol_addr",
            "weight": 2,
            "threshold": {"denom": "uluna", "amount": "100"},
            "recipient_kind": "contract"
        }
    """
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(lambda splitter, env: splitter.add_allocation(
            env, info,
            name=data.get("name"),
            recipient=data.get("recipient"),
            weight=data.get("weight"),
            threshold=data.get("threshold"),
            recipient_kind=data.get("recipient_kind"),
        ))
        return jsonify(result.to_dict()), 201

    return _run(handler)


@splitter_bp.route("/splitter/allocations/<name>", methods=["PATCH"])
@require_api_key
def modify_allocation(name):
    """Modify an entry's recipient, weight, threshold or kind. Omitted fields are kept."""
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(lambda splitter, env: splitter.modify_allocation(
            env, info, name,
            recipient=data.get("recipient"),
            weight=data.get("weight"),
            threshold=data.get("threshold"),
            recipient_kind=data.get("recipient_kind"),
        ))
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/allocations/<name>", methods=["DELETE"])
@require_api_key
def remove_allocation(name):
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(
            lambda splitter, env: splitter.remove_allocation(env, info, name)
        )
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/allocations", methods=["GET"])
def list_allocations():
    """
    Page through allocations in ascending name order.

    Query params:
        start_after: Exclusive cursor (entry name)
        limit: Page size, clamped to 1..30 (default 10)
    """
    start_after = request.args.get("start_after") or None
    limit = validate_pagination_params(request.args.get("limit"))

    def handler():
        allocations = get_service().query(
            lambda splitter: splitter.query_allocations(start_after, limit)
        )
        return jsonify({"allocations": allocations, "count": len(allocations)})

    return _run(handler)


@splitter_bp.route("/splitter/allocations/<name>", methods=["GET"])
def get_allocation(name):
    return _run(lambda: jsonify(get_service().query(lambda splitter: splitter.query_allocation(name))))


# =============================================================================
# Flush whitelist
# =============================================================================


@splitter_bp.route("/splitter/whitelist", methods=["POST"])
@require_api_key
def add_to_whitelist():
    """
    Allow an address to trigger flushes (controller only).

    Request body:
        {"sender": "gov_addr", "address": "keeper_addr"}
    """
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str, "address": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(
            lambda splitter, env: splitter.add_to_flush_whitelist(env, info, data["address"])
        )
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/whitelist/<address>", methods=["DELETE"])
@require_api_key
def remove_from_whitelist(address):
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(
            lambda splitter, env: splitter.remove_from_flush_whitelist(env, info, address)
        )
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/whitelist", methods=["GET"])
def get_whitelist():
    return _run(lambda: jsonify({
        "whitelist": get_service().query(lambda splitter: splitter.query_flush_whitelist())
    }))


# =============================================================================
# Governance
# =============================================================================


@splitter_bp.route("/splitter/governance/transfer", methods=["POST"])
@require_api_key
def transfer_governance():
    """
    Nominate a new controller.

    Request body:
        {"sender": "gov_addr", "gov_contract": "new_gov_addr", "blocks": 100}
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data, required_fields={"sender": str, "gov_contract": str, "blocks": int}
    )
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(lambda splitter, env: splitter.transfer_gov_contract(
            env, info, data["gov_contract"], data["blocks"]
        ))
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/governance/accept", methods=["POST"])
@require_api_key
def accept_governance():
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        result = get_service().execute(
            lambda splitter, env: splitter.accept_gov_contract(env, info)
        )
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/governance", methods=["GET"])
def get_governance():
    def handler():
        service = get_service()
        ownership = service.query(lambda splitter: splitter.query_ownership())
        ownership["block_height"] = service.chain.height
        return jsonify(ownership)

    return _run(handler)


@splitter_bp.route("/splitter/version", methods=["GET"])
def get_version():
    return _run(lambda: jsonify(get_service().query(lambda splitter: splitter.query_contract_version())))


# =============================================================================
# Reconciliation and events
# =============================================================================


@splitter_bp.route("/splitter/reconcile", methods=["POST"])
@require_api_key
def reconcile():
    """Credit inventory held beyond the accrued total to the first entry (controller only)."""
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"sender": str})
    if not is_valid:
        return bad_request(error)

    def handler():
        info = _info(data)
        service = get_service()
        result = service.execute(
            lambda splitter, env: splitter.reconcile(env, info, service.chain.bank)
        )
        return jsonify(result.to_dict())

    return _run(handler)


@splitter_bp.route("/splitter/events", methods=["GET"])
def get_events():
    limit = request.args.get("limit", 50, type=int)

    def handler():
        events = get_service().query(lambda splitter: splitter.get_events(limit))
        return jsonify({"events": events, "count": len(events)})

    return _run(handler)


# =============================================================================
# Local host controls
# =============================================================================


@splitter_bp.route("/chain/advance", methods=["POST"])
@require_api_key
def advance_chain():
    """
    Advance the block clock.

    Request body:
        {"blocks": 10}
    """
    data = json_body()
    is_valid, error = validate_json_schema(data, required_fields={"blocks": int})
    if not is_valid:
        return bad_request(error)
    if isinstance(data["blocks"], bool) or data["blocks"] < 0:
        return bad_request("blocks must be a non-negative integer")

    height = get_service().advance(data["blocks"])
    return jsonify({"block_height": height})


@splitter_bp.route("/bank/transfer", methods=["POST"])
@require_api_key
def bank_transfer():
    """
    Send funds directly, bypassing the splitter's deposit path.

    Request body:
        {"sender": "payer_addr", "recipient": "feesplit_contract",
         "funds": [{"denom": "uluna", "amount": "50"}]}
    """
    data = json_body()
    is_valid, error = validate_json_schema(
        data, required_fields={"sender": str, "recipient": str, "funds": (list, dict)}
    )
    if not is_valid:
        return bad_request(error)

    def handler():
        funds = coins_from_payload(data["funds"])
        sender = validate_address(data["sender"])
        recipient = validate_address(data["recipient"])
        get_service().bank_transfer(sender, recipient, funds)
        logger.info("Direct transfer %s -> %s", sender, recipient)
        return jsonify({"sender": sender, "recipient": recipient, "funds": coins_to_list(funds)})

    return _run(handler)


@splitter_bp.route("/bank/balances/<address>", methods=["GET"])
def get_balances(address):
    balances = get_service().chain.bank.get_all_balances(address)
    return jsonify({"address": address, "balances": coins_to_list(balances)})
