# ============================================
#   Rental Realtime — HTTP endpoints (/ws/...)
# ============================================

from flask import Blueprint, current_app, jsonify

from rental_realtime.registry import to_iso

ws_http = Blueprint("ws_http", __name__, url_prefix="/ws")


def _hub():
    return current_app.extensions["realtime_hub"]


@ws_http.route("/health")
def health():
    hub = _hub()
    return jsonify({
        "status": "ok",
        "timestamp": to_iso(hub.clock()),
        "statistics": hub.get_statistics(),
    })


@ws_http.route("/online")
def online_users():
    users = _hub().get_online_users()
    return jsonify({"users": users, "count": len(users)})


@ws_http.route("/conversation/<conversation_id>/participants")
def conversation_participants(conversation_id):
    participants = _hub().get_conversation_participants(conversation_id)
    return jsonify({
        "conversationId": conversation_id,
        "participants": participants,
        "count": len(participants),
    })


@ws_http.route("/conversation/<conversation_id>/typing")
def conversation_typing(conversation_id):
    return jsonify({
        "conversationId": conversation_id,
        "typingUsers": _hub().get_typing_users(conversation_id),
    })


@ws_http.route("/users/<user_id>/presence")
def user_presence(user_id):
    return jsonify(_hub().get_user_presence(user_id))
