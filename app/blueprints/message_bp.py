"""
Message Blueprint — department ↔ institution threads.

Endpoints:
    GET  /api/v1/messages/threads          — threads with unread counts
    GET  /api/v1/messages/threads/<ps_id>  — one thread; marks it read for the actor's role
    POST /api/v1/messages/threads/<ps_id>  — reply  { "content": "..." }

Freshness is request/response: clients reload the thread after sending.
"""

from flask import Blueprint, g, jsonify, request

from app.services import message_service as svc
from app.utils.errors import register_error_handlers

message_bp = Blueprint("message_bp", __name__, url_prefix="/api/v1/messages")
register_error_handlers(message_bp)


@message_bp.route("/threads", methods=["GET"])
def list_threads():
    threads = svc.list_threads(g.current_user)
    return jsonify({
        "threads": threads,
        "unread_total": sum(t["unread_count"] for t in threads),
    }), 200


@message_bp.route("/threads/<ps_id>", methods=["GET"])
def open_thread(ps_id):
    return jsonify(svc.open_thread(g.current_user, ps_id)), 200


@message_bp.route("/threads/<ps_id>", methods=["POST"])
def reply(ps_id):
    data = request.get_json(silent=True) or {}
    return jsonify(svc.send_reply(g.current_user, ps_id, data.get("content"))), 201
