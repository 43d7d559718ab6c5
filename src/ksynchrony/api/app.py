"""
HTTP API

Thin Flask layer over a KSynchrony instance. The instance is passed in
explicitly and stored on ``app.extensions`` so several apps (and tests) can
run against isolated instances.

Endpoints:
- GET  /health
- GET  /metrics
- GET  /api/v1/confirmations/<tx_id>
- GET  /api/v1/confirmations/<tx_id>/stream   (NDJSON until confident)
- POST /api/v1/payments/nonces                {address}
- POST /api/v1/payments/nonces/validate       {address, nonce}
- POST /api/v1/payments/nonces/use            {address, nonce}
- POST /api/v1/payments/requests              {address, amount, metadata?}
- GET  /api/v1/payments/merchants/<address>
- POST /api/v1/games                          {game_id, game_type, players}
- GET  /api/v1/games/<game_id>
- POST /api/v1/games/<game_id>/moves          {player_id, move}
- POST /api/v1/games/<game_id>/end
- GET  /api/v1/leaderboards/<game_type>
- POST /api/v1/devices/<device_id>/anchors    {data, covenant?}
- GET  /api/v1/devices/<device_id>/anchors
- POST /api/v1/devices/<device_id>/verify     {data, tx_id}
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Any, Dict, Tuple

from flask import Blueprint, Flask, Response, current_app, jsonify, request, stream_with_context

from ksynchrony.client import KSynchrony
from ksynchrony.core.exceptions import GameError, IoTError, KSynchronyError, ValidationError
from ksynchrony.core.validation import sanitize_string, validate_nonce_format
from ksynchrony.iot.engine import CovenantConditions

logger = logging.getLogger(__name__)

confirmations_bp = Blueprint("confirmations", __name__, url_prefix="/api/v1/confirmations")
payments_bp = Blueprint("payments", __name__, url_prefix="/api/v1/payments")
games_bp = Blueprint("games", __name__, url_prefix="/api/v1")
devices_bp = Blueprint("devices", __name__, url_prefix="/api/v1/devices")


def get_ksync() -> KSynchrony:
    return current_app.extensions["ksynchrony"]


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _required(payload: Dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise ValidationError(f"Missing field: {key}", details={"field": key})
    return payload[key]


# ==================== Confirmations ====================


@confirmations_bp.route("/<tx_id>", methods=["GET"])
def get_confirmation(tx_id: str) -> Tuple[Response, int]:
    result = get_ksync().estimate_confirmation(tx_id)
    return jsonify({"success": True, "confirmation": result.to_dict()}), 200


@confirmations_bp.route("/<tx_id>/stream", methods=["GET"])
def stream_confirmation(tx_id: str) -> Response:
    """Stream estimates as newline-delimited JSON until confident."""
    ksync = get_ksync()
    poll = request.args.get("poll", type=float)
    results = ksync.stream_confirmation(tx_id, poll_interval=poll)

    def generate():
        try:
            for result in results:
                yield json.dumps(result.to_dict()) + "\n"
        finally:
            results.close()

    return Response(stream_with_context(generate()), mimetype="application/x-ndjson")


# ==================== Payments ====================


@payments_bp.route("/nonces", methods=["POST"])
def issue_nonce() -> Tuple[Response, int]:
    payload = _json_body()
    token = get_ksync().issue_payment_nonce(_required(payload, "address"))
    return jsonify({"success": True, "nonce": token.to_dict()}), 201


@payments_bp.route("/nonces/validate", methods=["POST"])
def validate_nonce() -> Tuple[Response, int]:
    payload = _json_body()
    valid = get_ksync().validate_nonce(_required(payload, "address"), _required(payload, "nonce"))
    return jsonify({"success": True, "valid": valid}), 200


@payments_bp.route("/nonces/use", methods=["POST"])
def use_nonce() -> Tuple[Response, int]:
    payload = _json_body()
    nonce = validate_nonce_format(_required(payload, "nonce"))
    get_ksync().mark_nonce_used(_required(payload, "address"), nonce)
    return jsonify({"success": True}), 200


@payments_bp.route("/requests", methods=["POST"])
def create_payment_request() -> Tuple[Response, int]:
    payload = _json_body()
    payment = get_ksync().payments.create_payment_request(
        _required(payload, "address"),
        _required(payload, "amount"),
        metadata=payload.get("metadata"),
    )
    return jsonify({"success": True, "request": payment.to_dict()}), 201


@payments_bp.route("/merchants/<address>", methods=["GET"])
def merchant_stats(address: str) -> Tuple[Response, int]:
    return jsonify({"success": True, "stats": get_ksync().payments.get_merchant_stats(address)}), 200


# ==================== Games ====================


@games_bp.route("/games", methods=["POST"])
def create_game() -> Tuple[Response, int]:
    payload = _json_body()
    game = get_ksync().gaming.create_game(
        _required(payload, "game_id"),
        sanitize_string(payload.get("game_type")) or "default",
        list(_required(payload, "players")),
    )
    return jsonify({"success": True, "game": asdict(game)}), 201


@games_bp.route("/games/<game_id>", methods=["GET"])
def get_game(game_id: str) -> Tuple[Response, int]:
    stats = get_ksync().gaming.get_game_stats(game_id)
    if stats is None:
        raise GameError(f"Game not found: {game_id}")
    moves = [m.to_dict() for m in get_ksync().gaming.get_moves(game_id)]
    return jsonify({"success": True, "game": stats, "moves": moves}), 200


@games_bp.route("/games/<game_id>/moves", methods=["POST"])
def submit_move(game_id: str) -> Tuple[Response, int]:
    payload = _json_body()
    move = get_ksync().gaming.submit_move(game_id, _required(payload, "player_id"), payload.get("move") or {})
    return jsonify({"success": True, "move": move.to_dict()}), 201


@games_bp.route("/games/<game_id>/end", methods=["POST"])
def end_game(game_id: str) -> Tuple[Response, int]:
    game = get_ksync().gaming.end_game(game_id)
    return jsonify({"success": True, "game": asdict(game)}), 200


@games_bp.route("/leaderboards/<game_type>", methods=["GET"])
def leaderboard(game_type: str) -> Tuple[Response, int]:
    limit = request.args.get("limit", default=10, type=int)
    board = get_ksync().gaming.get_leaderboard(game_type, limit=limit)
    return jsonify({"success": True, "leaderboard": asdict(board)}), 200


# ==================== Devices ====================


@devices_bp.route("/<device_id>/anchors", methods=["POST"])
def anchor(device_id: str) -> Tuple[Response, int]:
    payload = _json_body()
    data = _required(payload, "data")
    covenant = payload.get("covenant")
    iot = get_ksync().iot
    if covenant:
        if not isinstance(covenant, dict):
            raise ValidationError("covenant must be an object")
        try:
            conditions = CovenantConditions(**covenant)
        except TypeError as exc:
            raise ValidationError(f"Invalid covenant: {exc}") from exc
        record = iot.anchor_with_covenant(device_id, data, conditions)
    else:
        record = iot.anchor_data(device_id, data)
    return jsonify({"success": True, "anchor": record.to_dict()}), 201


@devices_bp.route("/<device_id>/anchors", methods=["GET"])
def anchor_history(device_id: str) -> Tuple[Response, int]:
    history = get_ksync().iot.get_data_history(
        device_id,
        from_time=request.args.get("from", type=float),
        to_time=request.args.get("to", type=float),
        limit=request.args.get("limit", type=int),
    )
    return jsonify({"success": True, "anchors": [a.to_dict() for a in history]}), 200


@devices_bp.route("/<device_id>/verify", methods=["POST"])
def verify(device_id: str) -> Tuple[Response, int]:
    payload = _json_body()
    verified = get_ksync().iot.verify_data(device_id, _required(payload, "data"), _required(payload, "tx_id"))
    return jsonify({"success": True, "verified": verified}), 200


# ==================== App factory ====================


def _error_status(exc: KSynchronyError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, (GameError, IoTError)):
        return 404 if "not found" in exc.message.lower() else 409
    return 500


def create_app(ksync: KSynchrony) -> Flask:
    """Build a Flask app serving ``ksync``."""
    app = Flask(__name__)
    app.extensions["ksynchrony"] = ksync

    app.register_blueprint(confirmations_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(games_bp)
    app.register_blueprint(devices_bp)

    @app.errorhandler(KSynchronyError)
    def handle_ksync_error(exc: KSynchronyError) -> Tuple[Response, int]:
        status = _error_status(exc)
        if status >= 500:
            logger.error("API error: %s", exc, extra={"event": "api.error", "code": exc.code})
        body = exc.to_dict()
        body["success"] = False
        return jsonify(body), status

    @app.route("/health", methods=["GET"])
    def health() -> Tuple[Response, int]:
        return jsonify({
            "status": "ok",
            "network": ksync.config.network.value,
            "reconciler": ksync.reconciler.get_stats(),
            "nonces": ksync.nonce_registry.stats(),
        }), 200

    @app.route("/metrics", methods=["GET"])
    def metrics() -> Response:
        return Response(ksync.metrics.export(), mimetype="text/plain; version=0.0.4")

    return app
