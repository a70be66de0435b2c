from flask import Blueprint, current_app, jsonify

from utils.clock import utcnow

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
def health():
    return jsonify(
        success=True,
        data={
            "status": "healthy",
            "timestamp": utcnow().isoformat() + "Z",
            "environment": current_app.config.get("ENVIRONMENT", "development"),
            "version": current_app.config.get("APP_VERSION", "1.0.0"),
        },
    ), 200
