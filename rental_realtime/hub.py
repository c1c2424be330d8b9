# ============================================
#   Rental Realtime — Hub
#   Owns the registries for one app instance and exposes
#   the fan-out primitives used by the event handlers.
# ============================================

import time
import threading

from rental_realtime.registry import ConnectionRegistry, to_iso
from rental_realtime.conversations import ConversationIndex
from rental_realtime.typing_state import TypingState
from rental_realtime.errors import ForbiddenError
from rental_realtime.logger import log_info, log_exception


class RealtimeHub:
    """
    Process-wide, in-memory, unreplicated state. A restart loses every
    connection, subscription and typing entry.

    Mutations happen under `self.lock`; emits happen after it is released.
    """

    def __init__(self, socketio, store, settings=None, clock=time.time):
        settings = settings or {}

        self.socketio = socketio
        self.store = store
        self.clock = clock

        self.default_user_name = settings.get("DEFAULT_USER_NAME", "User")
        self.auto_join = settings.get("AUTO_JOIN_CONVERSATIONS", True)
        self.enforce_acl = settings.get("ENFORCE_CONVERSATION_ACL", False)
        self.max_message_length = settings.get("MAX_MESSAGE_LENGTH", 4000)

        self.registry = ConnectionRegistry(clock=clock)
        self.conversations = ConversationIndex()
        self.typing = TypingState(
            visible_seconds=settings.get("TYPING_VISIBLE_SECONDS", 5.0),
            stale_seconds=settings.get("TYPING_STALE_SECONDS", 10.0),
            clock=clock,
        )

        self.lock = threading.RLock()

    # =====================================================
    #   FRAMES
    # =====================================================

    def envelope(self, event, payload):
        return {
            "event": event,
            "payload": payload,
            "timestamp": to_iso(self.clock()),
        }

    def _send(self, sids, event, payload):
        frame = self.envelope(event, payload)
        sent = 0
        for sid in sids:
            try:
                self.socketio.emit(event, frame, to=sid, namespace="/")
                sent += 1
            except Exception:
                # best-effort: one broken channel must not stop the fan-out
                log_exception("hub", f"Failed to emit '{event}' to sid={sid}")
        return sent

    # =====================================================
    #   FAN-OUT PRIMITIVES
    # =====================================================

    def emit_to_connection(self, sid, event, payload):
        return self._send([sid], event, payload)

    def emit_to_users(self, user_ids, event, payload, exclude_sid=None):
        with self.lock:
            sids = [
                sid
                for uid in user_ids
                for sid in self.registry.get_user_connections(uid)
                if sid != exclude_sid
            ]
        return self._send(sids, event, payload)

    def emit_to_conversation(self, conversation_id, event, payload, exclude_user=None):
        """
        Every subscriber of the conversation. When nobody is subscribed,
        fall back to the stored participants that are currently online.
        """
        with self.lock:
            if self.conversations.get_conversation_participants_count(conversation_id):
                sids = self.conversations.get_conversation_sids(conversation_id, exclude_user=exclude_user)
            else:
                sids = self._stored_participant_sids(conversation_id, exclude_user)

        return self._send(sids, event, payload)

    def _stored_participant_sids(self, conversation_id, exclude_user):
        participants = self.store.get_participants(conversation_id) if self.store else None
        if not participants:
            return []

        return [
            sid
            for uid in participants
            if exclude_user is None or uid != str(exclude_user)
            for sid in self.registry.get_user_connections(uid)
        ]

    def broadcast(self, event, payload):
        with self.lock:
            sids = list(self.registry.connections.keys())
        return self._send(sids, event, payload)

    # =====================================================
    #   CONNECTION LIFECYCLE
    # =====================================================

    def open_connection(self, sid, user_id, display_name=None, metadata=None):
        user_id = str(user_id)
        display_name = display_name or self.default_user_name

        with self.lock:
            previous = self.registry.get_connection(sid)
            if previous and previous["user_id"] != user_id:
                # sid rebound to another user: its subscriptions belong to the old one
                self.conversations.drop_connection(sid)

            came_online = self.registry.add_connection(sid, user_id, display_name, metadata)

            if self.auto_join and self.store is not None:
                for conversation_id in self.store.get_user_conversations(user_id):
                    self.conversations.join_conversation(user_id, conversation_id, sid)

            conversation_ids = sorted(self.conversations.get_connection_conversations(sid))
            conn = self.registry.get_connection(sid)
            online = self.registry.get_online_users()

        self.emit_to_connection(sid, "connection_established", {
            "sid": sid,
            "userId": user_id,
            "userName": display_name,
            "connectedAt": to_iso(conn["connected_at"]),
            "conversationIds": conversation_ids,
        })
        self.emit_to_connection(sid, "online_users", {
            "users": online,
            "count": len(online),
        })

        if came_online:
            self._broadcast_presence(user_id, True, conversation_ids)

        log_info("hub", f"Connection open: sid={sid} user={user_id} first={came_online}")
        return came_online

    def close_connection(self, sid):
        with self.lock:
            conn = self.registry.get_connection(sid)
            if conn is None:
                return False

            user_id = conn["user_id"]
            conversations_before = self.conversations.get_user_conversations(user_id)

            fully_left = self.conversations.drop_connection(sid)
            cleared = self.typing.clear_user(user_id, fully_left)

            went_offline = self.registry.remove_connection(sid, user_id)
            if went_offline:
                cleared.extend(self.typing.clear_user(user_id))

        for conversation_id, name in cleared:
            self._emit_typing(conversation_id, user_id, name, False)

        if went_offline:
            self._broadcast_presence(user_id, False, conversations_before)

        log_info("hub", f"Connection closed: sid={sid} user={user_id} offline={went_offline}")
        return went_offline

    def _broadcast_presence(self, user_id, is_online, conversation_ids):
        payload = {
            "userId": user_id,
            "isOnline": is_online,
            "conversationIds": list(conversation_ids),
        }
        if not is_online:
            payload["lastSeen"] = to_iso(self.clock())

        with self.lock:
            sids = set()
            for conversation_id in conversation_ids:
                sids.update(self.conversations.get_conversation_sids(conversation_id, exclude_user=user_id))

        self._send(sorted(sids), "user_online" if is_online else "user_offline", payload)

    # =====================================================
    #   CONVERSATIONS
    # =====================================================

    def authorize_conversation(self, user_id, conversation_id):
        if not self.enforce_acl:
            return

        participants = self.store.get_participants(conversation_id)
        if participants is None:
            raise ForbiddenError(f"Unknown conversation: {conversation_id}")
        if str(user_id) not in participants:
            raise ForbiddenError(f"User {user_id} is not a participant of {conversation_id}")

    def join_conversation(self, user_id, conversation_id, sid=None):
        """
        Subscribe one connection (sid) or every connection of the user.
        Returns the participant count afterwards.
        """
        self.authorize_conversation(user_id, conversation_id)

        with self.lock:
            sids = [sid] if sid is not None else self.registry.get_user_connections(user_id)
            for s in sids:
                self.conversations.join_conversation(user_id, conversation_id, s)
            return self.conversations.get_conversation_participants_count(conversation_id)

    def leave_conversation(self, user_id, conversation_id, sid=None):
        with self.lock:
            fully_left = self.conversations.leave_conversation(user_id, conversation_id, sid)
            cleared = self.typing.clear_user(user_id, [conversation_id]) if fully_left else []

        for cid, name in cleared:
            self._emit_typing(cid, user_id, name, False)

        return fully_left

    def get_conversation_participants(self, conversation_id):
        with self.lock:
            return self.conversations.get_conversation_participants(conversation_id)

    def get_conversation_participants_count(self, conversation_id):
        with self.lock:
            return self.conversations.get_conversation_participants_count(conversation_id)

    # =====================================================
    #   TYPING
    # =====================================================

    def _emit_typing(self, conversation_id, user_id, display_name, is_typing):
        self.emit_to_conversation(
            conversation_id,
            "typing_start" if is_typing else "typing_stop",
            {
                "conversationId": conversation_id,
                "userId": user_id,
                "userName": display_name,
                "isTyping": is_typing,
            },
            exclude_user=user_id,
        )

    def handle_typing_indicator(self, conversation_id, user_id, display_name, is_typing):
        user_id = str(user_id)
        conversation_id = str(conversation_id)
        self.authorize_conversation(user_id, conversation_id)

        with self.lock:
            self.registry.update_user_activity(user_id)
            if is_typing:
                self.typing.start(conversation_id, user_id, display_name)
            else:
                self.typing.stop(conversation_id, user_id)

        self._emit_typing(conversation_id, user_id, display_name, is_typing)

    def get_typing_users(self, conversation_id):
        with self.lock:
            return self.typing.get_typing_users(conversation_id)

    def sweep_typing(self):
        with self.lock:
            removed = self.typing.sweep()

        for conversation_id, user_id, name in removed:
            self._emit_typing(conversation_id, user_id, name, False)

        if removed:
            log_info("hub", f"Expired {len(removed)} stale typing indicator(s).")
        return len(removed)

    # =====================================================
    #   MESSAGES (persistence collaborator)
    # =====================================================

    def send_message(self, user_id, display_name, conversation_id, content, msg_type="text", metadata=None):
        self.authorize_conversation(user_id, conversation_id)

        message = self.store.create_message(conversation_id, user_id, content, msg_type, metadata)

        with self.lock:
            was_typing = self.typing.stop(conversation_id, user_id)
        if was_typing:
            self._emit_typing(conversation_id, str(user_id), display_name, False)

        self.emit_to_conversation(conversation_id, "message_sent", {
            "conversationId": conversation_id,
            "message": message,
            "sender": {"userId": str(user_id), "userName": display_name},
        })
        return message

    def mark_read(self, user_id, message_id):
        stored = self.store.get_message(message_id)
        self.authorize_conversation(user_id, stored["conversationId"])

        message = self.store.mark_read(message_id, user_id)

        self.emit_to_conversation(message["conversationId"], "message_read", {
            "messageId": message_id,
            "conversationId": message["conversationId"],
            "userId": str(user_id),
            "readAt": message["readBy"].get(str(user_id)),
        })
        return message

    # =====================================================
    #   PRESENCE / STATUS
    # =====================================================

    def get_connection(self, sid):
        with self.lock:
            conn = self.registry.get_connection(sid)
            return dict(conn) if conn else None

    def update_user_activity(self, user_id):
        with self.lock:
            self.registry.update_user_activity(user_id)

    def update_status(self, user_id, status, sid=None):
        with self.lock:
            self.registry.set_user_status(user_id, status)
            conversation_ids = self.conversations.get_user_conversations(user_id)
            sids = set()
            for conversation_id in conversation_ids:
                sids.update(self.conversations.get_conversation_sids(conversation_id, exclude_user=user_id))
            sids.update(s for s in self.registry.get_user_connections(user_id) if s != sid)

        self._send(sorted(sids), "user_status", {"userId": str(user_id), "status": status})

    def get_online_users(self):
        with self.lock:
            return self.registry.get_online_users()

    def get_user_presence(self, user_id):
        with self.lock:
            return self.registry.get_user_presence(user_id)

    def get_presence(self, user_ids=None):
        with self.lock:
            if user_ids is None:
                user_ids = self.registry.get_online_users()
            return [self.registry.get_user_presence(uid) for uid in user_ids]

    def get_statistics(self):
        with self.lock:
            return {
                "totalConnections": self.registry.connection_count(),
                "uniqueUsers": self.registry.user_count(),
                "activeConversations": self.conversations.conversation_count(),
                "typingUsers": self.typing.typing_count(),
            }

