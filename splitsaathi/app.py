from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from flask import Flask, current_app, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .balances import BalanceReport
from .config import Config, config
from .errors import InvalidPayload, SplitError
from .models import ExpenseDraft, Group, SplitType, parse_amount, parse_splits
from .service import LedgerService
from .store import GroupStore, build_store

logger = logging.getLogger(__name__)


def create_app(store: Optional[GroupStore] = None, settings: Optional[Config] = None) -> Flask:
    settings = settings or config
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("splitsaathi").setLevel(settings.LOG_LEVEL)

    app = Flask(__name__)
    app.extensions["ledger"] = LedgerService.from_config(store or build_store(settings), settings)

    CORS(
        app,
        resources={r"/api/*": {"origins": settings.CORS_ORIGINS}},
    )

    register_error_handlers(app)
    register_routes(app)
    return app


def _ledger() -> LedgerService:
    return current_app.extensions["ledger"]


def _payload() -> Dict[str, Any]:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidPayload("body", "must be a JSON object")
    return payload


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(SplitError)
    def handle_split_error(exc: SplitError):
        return jsonify(exc.to_dict()), exc.status

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.name.lower().replace(" ", "-"), "message": exc.description}), exc.code
        logger.exception("unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "internal-error", "message": "An unexpected error occurred"}), 500


def register_routes(app: Flask) -> None:
    @app.get("/api/groups")
    def list_groups():
        ledger = _ledger()
        groups = []
        for group in ledger.list_groups():
            groups.append(_group_with_stats(group, ledger.get_balances(group.id)))
        return jsonify({"success": True, "data": groups})

    @app.post("/api/groups")
    def create_group():
        payload = _payload()
        members = payload.get("members")
        if not isinstance(members, list):
            raise InvalidPayload("members", "must be a list of names")

        group = _ledger().create_group(
            payload.get("name") or "",
            members,
            payload.get("description") or "",
        )
        return jsonify({"success": True, "data": _group_with_stats(group, None)}), 201

    @app.get("/api/groups/<int:group_id>")
    def get_group(group_id: int):
        ledger = _ledger()
        group = ledger.get_group(group_id)
        return jsonify({"success": True, "data": _group_with_stats(group, ledger.get_balances(group_id))})

    @app.delete("/api/groups/<int:group_id>")
    def delete_group(group_id: int):
        _ledger().delete_group(group_id)
        return jsonify({"success": True, "message": "Group and all associated expenses deleted successfully"})

    @app.post("/api/groups/<int:group_id>/join")
    def join_group(group_id: int):
        payload = _payload()
        group, joined = _ledger().join_group(group_id, payload.get("name"))
        return jsonify(_join_response(group, joined))

    @app.post("/api/groups/join")
    def join_by_invite_code():
        payload = _payload()
        group, joined = _ledger().join_by_invite_code(payload.get("inviteCode") or "", payload.get("name"))
        return jsonify(_join_response(group, joined))

    @app.get("/api/groups/<int:group_id>/expenses")
    def get_group_expenses(group_id: int):
        expenses = _ledger().list_expenses(group_id)
        expenses.sort(key=lambda expense: expense.id, reverse=True)
        return jsonify({"success": True, "data": [expense.to_dict() for expense in expenses]})

    @app.post("/api/groups/<int:group_id>/expenses")
    def add_expense(group_id: int):
        draft = ExpenseDraft.from_payload(group_id, _payload())
        expense = _ledger().record_expense(draft)
        return jsonify({"success": True, "data": expense.to_dict()}), 201

    @app.post("/api/expenses/<int:expense_id>/reverse")
    def reverse_expense(expense_id: int):
        expense = _ledger().reverse_expense(expense_id)
        return jsonify({"success": True, "data": expense.to_dict()}), 201

    @app.post("/api/groups/<int:group_id>/splits/quote")
    def quote_splits(group_id: int):
        payload = _payload()
        splits = _ledger().quote_splits(
            group_id,
            parse_amount(payload.get("amount"), "amount"),
            SplitType.parse(payload.get("splitType") or SplitType.EQUAL.value),
            parse_splits(payload),
        )
        return jsonify({"success": True, "data": [split.to_dict() for split in splits]})

    @app.get("/api/groups/<int:group_id>/balances")
    def get_group_balances(group_id: int):
        ledger = _ledger()
        report = ledger.get_balances(group_id)
        unsettled = ledger.unsettled(report)
        data = report.to_dict()
        data["settled"] = not unsettled
        data["residuals"] = {name: float(value) for name, value in unsettled.items()}
        data["settlements"] = _settlements(ledger.settle_up(report))
        return jsonify({"success": True, "data": data})

    @app.post("/api/groups/<int:group_id>/settlements")
    def record_settlement(group_id: int):
        payload = _payload()
        expense = _ledger().record_settlement(
            group_id,
            payload.get("from"),
            payload.get("to"),
            parse_amount(payload.get("amount"), "amount"),
            payload.get("date"),
        )
        return jsonify({"success": True, "data": expense.to_dict()}), 201


def _group_with_stats(group: Group, report: Optional[BalanceReport]) -> Dict[str, Any]:
    data = group.to_dict()
    if report is None:
        data["totalExpenses"] = 0
        data["balances"] = {member: 0 for member in group.members}
    else:
        data["totalExpenses"] = float(report.total_expenses)
        data["balances"] = {name: float(value) for name, value in report.balances.items()}
    return data


def _join_response(group: Group, joined: bool) -> Dict[str, Any]:
    return {
        "success": True,
        "data": group.to_dict(),
        "message": "Successfully joined group" if joined else "You are already a member of this group",
    }


def _settlements(transfers: List[Tuple[str, str, Any]]) -> List[Dict[str, Any]]:
    return [
        {"from": debtor, "to": creditor, "amount": float(amount)}
        for debtor, creditor, amount in transfers
    ]


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
