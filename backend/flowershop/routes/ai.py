# Overview: Flask API route for the natural-language transaction parser.

from flask import Blueprint, current_app, request

from ..decorators import require_auth
from ..errors import ShopError
from ..extensions import db
from ..services.parser_service import TransactionParser, active_inventory
from .context import error_response, server_error


ai_bp = Blueprint("ai", __name__, url_prefix="/api/ai")


def get_parser() -> TransactionParser:
    """One parser per app; tests may pre-seed app.extensions['transaction_parser']."""
    parser = current_app.extensions.get("transaction_parser")
    if parser is None:
        parser = TransactionParser.from_config(current_app.config)
        current_app.extensions["transaction_parser"] = parser
    return parser


@ai_bp.post("/parse-transaction")
@require_auth
def parse_transaction_route():
    """
    Body: {prompt, language?: "es" | "en"}

    Returns a draft for the create-transaction form; nothing is saved.
    """
    data = request.get_json(silent=True) or {}
    try:
        draft = get_parser().parse(
            data.get("prompt"),
            data.get("language") or "es",
            active_inventory(db.session),
        )
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to parse transaction prompt")
    return {"draft": draft}, 200
