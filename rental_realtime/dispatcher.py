# ============================================
#   Rental Realtime — Event Dispatcher
#   {event, payload} frames → closed handler table
# ============================================

import json
from enum import Enum

from rental_realtime.errors import (
    RealtimeError,
    InvalidFrameError,
    UnknownEventError,
    ValidationError,
)
from rental_realtime.registry import STATUSES, to_iso
from rental_realtime.storage import is_valid_id
from rental_realtime.logger import log_info, log_warning, log_exception


class InboundEvent(str, Enum):
    JOIN_CONVERSATION = "join_conversation"
    LEAVE_CONVERSATION = "leave_conversation"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    MARK_READ = "mark_read"
    SEND_MESSAGE = "send_message"
    PING = "ping"
    REQUEST_PRESENCE = "request_presence"
    UPDATE_STATUS = "update_status"


# =====================================================
#   PAYLOAD HELPERS
# =====================================================

def _require_id(payload, key):
    value = payload.get(key)
    if value is None or value == "":
        raise ValidationError(f"Missing required field: {key}")
    if not is_valid_id(value):
        raise ValidationError(f"Invalid {key}: {value!r}")
    return value


def decode_frame(frame):
    """
    Accepts a dict or a JSON string shaped {event: str, payload: object}.
    Returns (event, payload).
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except ValueError as e:
            raise InvalidFrameError(f"Frame is not valid JSON: {e}") from e

    if not isinstance(frame, dict):
        raise InvalidFrameError("Frame must be an object")

    event = frame.get("event")
    if not isinstance(event, str) or not event:
        raise InvalidFrameError("Frame is missing a string 'event'")

    payload = frame.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise InvalidFrameError("Frame 'payload' must be an object")

    return event, payload


class EventDispatcher:

    def __init__(self, hub):
        self.hub = hub
        self.handlers = {
            InboundEvent.JOIN_CONVERSATION: self.on_join_conversation,
            InboundEvent.LEAVE_CONVERSATION: self.on_leave_conversation,
            InboundEvent.TYPING_START: self.on_typing_start,
            InboundEvent.TYPING_STOP: self.on_typing_stop,
            InboundEvent.MARK_READ: self.on_mark_read,
            InboundEvent.SEND_MESSAGE: self.on_send_message,
            InboundEvent.PING: self.on_ping,
            InboundEvent.REQUEST_PRESENCE: self.on_request_presence,
            InboundEvent.UPDATE_STATUS: self.on_update_status,
        }

    # =====================================================
    #   ENTRY POINTS
    # =====================================================

    def dispatch_frame(self, sid, frame):
        try:
            event, payload = decode_frame(frame)
        except InvalidFrameError as e:
            log_warning("dispatcher", f"Invalid frame from sid={sid}: {e.message}")
            self.emit_error(sid, None, e.message, e.code)
            return
        self.dispatch(sid, event, payload)

    def dispatch(self, sid, event, payload=None):
        """
        Route one event. Never raises: every failure becomes an "error"
        frame to the sender and the connection stays open.
        """
        try:
            try:
                kind = InboundEvent(event)
            except ValueError:
                raise UnknownEventError(f"Unknown event: {event}") from None

            if payload is None:
                payload = {}
            if not isinstance(payload, dict):
                raise InvalidFrameError("Event payload must be an object")

            conn = self.hub.get_connection(sid)
            if conn is None:
                raise RealtimeError("Connection is not registered", code="not_connected")

            self.hub.update_user_activity(conn["user_id"])
            self.handlers[kind](conn, payload)

        except RealtimeError as e:
            log_warning("dispatcher", f"Event '{event}' from sid={sid} failed: {e.message}")
            self.emit_error(sid, event, e.message, e.code)

        except Exception as e:
            log_exception("dispatcher", f"Handler error on '{event}' from sid={sid}")
            self.emit_error(sid, event, str(e), "internal_error")

    def emit_error(self, sid, event, message, code):
        self.hub.emit_to_connection(sid, "error", {
            "event": event,
            "message": message,
            "code": code,
        })

    # =====================================================
    #   CONVERSATIONS
    # =====================================================

    def on_join_conversation(self, conn, payload):
        conversation_id = _require_id(payload, "conversationId")
        count = self.hub.join_conversation(conn["user_id"], conversation_id, conn["sid"])

        self.hub.emit_to_connection(conn["sid"], "join_conversation", {
            "conversationId": conversation_id,
            "participants": count,
            "typingUsers": self.hub.get_typing_users(conversation_id),
        })

    def on_leave_conversation(self, conn, payload):
        conversation_id = _require_id(payload, "conversationId")
        self.hub.leave_conversation(conn["user_id"], conversation_id, conn["sid"])

        self.hub.emit_to_connection(conn["sid"], "leave_conversation", {
            "conversationId": conversation_id,
            "participants": self.hub.get_conversation_participants_count(conversation_id),
        })

    # =====================================================
    #   TYPING
    # =====================================================

    def on_typing_start(self, conn, payload):
        conversation_id = _require_id(payload, "conversationId")
        self.hub.handle_typing_indicator(conversation_id, conn["user_id"], conn["display_name"], True)

    def on_typing_stop(self, conn, payload):
        conversation_id = _require_id(payload, "conversationId")
        self.hub.handle_typing_indicator(conversation_id, conn["user_id"], conn["display_name"], False)

    # =====================================================
    #   MESSAGES
    # =====================================================

    def on_send_message(self, conn, payload):
        conversation_id = _require_id(payload, "conversationId")

        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Missing required field: content")

        content = content.strip()
        if len(content) > self.hub.max_message_length:
            raise ValidationError(f"Message too long ({len(content)} chars)")

        msg_type = payload.get("type") or "text"
        if not isinstance(msg_type, str):
            raise ValidationError("Field 'type' must be a string")

        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError("Field 'metadata' must be an object")

        message = self.hub.send_message(
            conn["user_id"], conn["display_name"], conversation_id, content, msg_type, metadata
        )
        log_info("dispatcher", f"Message {message['_id']} in {conversation_id} from {conn['user_id']}")

    def on_mark_read(self, conn, payload):
        message_id = _require_id(payload, "messageId")
        self.hub.mark_read(conn["user_id"], message_id)

    # =====================================================
    #   PRESENCE
    # =====================================================

    def on_ping(self, conn, payload):
        self.hub.emit_to_connection(conn["sid"], "pong", {"timestamp": to_iso(self.hub.clock())})

    def on_request_presence(self, conn, payload):
        user_ids = payload.get("userIds")
        if user_ids is not None:
            if not isinstance(user_ids, list) or not all(isinstance(u, str) for u in user_ids):
                raise ValidationError("Field 'userIds' must be a list of strings")

        self.hub.emit_to_connection(conn["sid"], "presence", {
            "users": self.hub.get_presence(user_ids),
        })

    def on_update_status(self, conn, payload):
        status = payload.get("status")
        if status not in STATUSES:
            raise ValidationError(f"Invalid status: {status!r} (expected one of {', '.join(STATUSES)})")

        self.hub.update_status(conn["user_id"], status, conn["sid"])
        self.hub.emit_to_connection(conn["sid"], "user_status", {
            "userId": conn["user_id"],
            "status": status,
        })
