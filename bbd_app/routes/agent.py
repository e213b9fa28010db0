from flask import Blueprint, Response, current_app, jsonify, stream_with_context

from bbd_app.agent import run_agent
from bbd_app.auth import require_auth
from bbd_app.constants import ROLE_ADMIN, ROLE_MANAGER
from bbd_app.routes import json_body

agent_bp = Blueprint("agent", __name__, url_prefix="/api")


@agent_bp.route("/ai-agent", methods=["POST"])
def ai_agent():
    user = require_auth()
    if user.role_name not in (ROLE_ADMIN, ROLE_MANAGER):
        return jsonify({"error": "Forbidden"}), 403

    messages = json_body().get("messages")
    if not isinstance(messages, list) or not messages:
        return jsonify({"error": "Messages are required"}), 400

    api_key = current_app.config.get("GEMINI_API_KEY")
    if not api_key:
        current_app.logger.error("AI agent called without GEMINI_API_KEY")
        return jsonify({"error": "GEMINI_API_KEY not configured"}), 500

    current_app.logger.info("AI agent request from %s (%s messages)", user.email, len(messages))
    return Response(
        stream_with_context(run_agent(messages, api_key)),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
