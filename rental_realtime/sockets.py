# ============================================
#   Rental Realtime — Socket.IO Handlers
#   CONNECTING → OPEN (connect) → CLOSED (disconnect)
# ============================================

from flask import request
from flask_socketio import ConnectionRefusedError

from rental_realtime.auth import verify_token
from rental_realtime.dispatcher import InboundEvent
from rental_realtime.logger import log_info, log_warning, log_exception


def register_socket_handlers(socketio, hub, dispatcher, settings):

    # -----------------------------------------
    # CONNECT (query: userId, userName, token)
    # -----------------------------------------
    @socketio.on("connect", namespace="/")
    def on_connect(auth=None):
        user_id = (request.args.get("userId") or "").strip()
        if not user_id:
            log_warning("sockets", f"Connection refused (missing userId): sid={request.sid}")
            raise ConnectionRefusedError("userId is required")

        token = request.args.get("token")
        if not token and isinstance(auth, dict):
            token = auth.get("token")

        if not verify_token(
            token,
            user_id,
            verify_url=settings.get("TOKEN_VERIFY_URL", ""),
            require=settings.get("REQUIRE_TOKEN_VERIFICATION", False),
            timeout=settings.get("TOKEN_VERIFY_TIMEOUT", 8),
        ):
            log_warning("sockets", f"Connection refused (bad token): user={user_id}")
            raise ConnectionRefusedError("unauthorized")

        user_name = (request.args.get("userName") or "").strip() or settings.get("DEFAULT_USER_NAME", "User")

        hub.open_connection(request.sid, user_id, user_name, {
            "remoteAddr": request.remote_addr,
            "userAgent": request.headers.get("User-Agent"),
            "hasToken": bool(token),
        })

    # -----------------------------------------
    # DISCONNECT
    # -----------------------------------------
    @socketio.on("disconnect", namespace="/")
    def on_disconnect(reason=None):
        hub.close_connection(request.sid)
        log_info("sockets", f"Client disconnected: sid={request.sid} reason={reason}")

    # -----------------------------------------
    # ENVELOPE FRAMES: {event, payload}
    # -----------------------------------------
    @socketio.on("message", namespace="/")
    def on_message(data):
        dispatcher.dispatch_frame(request.sid, data)

    @socketio.on("json", namespace="/")
    def on_json(data):
        dispatcher.dispatch_frame(request.sid, data)

    # -----------------------------------------
    # NAMED EVENTS: emit("typing_start", payload)
    # -----------------------------------------
    def _named_handler(event):
        def handler(data=None):
            dispatcher.dispatch(request.sid, event, data)
        return handler

    for event in InboundEvent:
        socketio.on_event(event.value, _named_handler(event.value), namespace="/")

    @socketio.on("*", namespace="/")
    def on_unknown(event, data=None):
        dispatcher.dispatch(request.sid, event, data)

    @socketio.on_error_default
    def on_socket_error(e):
        log_exception("sockets", f"Unhandled socket error: {e}")
