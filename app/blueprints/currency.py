from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from app.services.currency_rates import CurrencyRateError, CurrencyRateService


currency_bp = Blueprint("currency", __name__, url_prefix="/api/currency-rates")


def _rate_service():
    return CurrencyRateService(
        g.db,
        current_app.extensions["currency_rate_cache"],
        api_key=current_app.config.get("FIXER_API_KEY"),
        app=current_app,
    )


@currency_bp.route("/latest")
def latest_rates():
    try:
        rates = _rate_service().get_latest_rates_or_update()
    except SQLAlchemyError as exc:
        current_app.logger.error("Error getting latest currency rates: %s", exc)
        return jsonify({"error": "Failed to get currency rates"}), 500
    if rates is None:
        return jsonify({"error": "Currency rates not found"}), 404
    return jsonify({"data": rates})


@currency_bp.route("/refresh", methods=["POST"])
def refresh_rates():
    if not current_app.config.get("FIXER_API_KEY"):
        return jsonify({"error": "FIXER_API_KEY is not configured"}), 503
    try:
        rates = _rate_service().refresh()
    except CurrencyRateError as exc:
        g.db.rollback()
        current_app.logger.warning("Currency rate refresh failed: %s", exc)
        return jsonify({"error": str(exc)}), 502
    return jsonify({"data": rates})
