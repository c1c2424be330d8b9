# ============================================
#   Rental Realtime — Conversation Membership Index
#   (ephemeral fan-out subscriptions, NOT the stored participant list)
# ============================================

from rental_realtime.logger import log_info


class ConversationIndex:
    """
    subscriptions = { conversation_id: { user_id: set(sid) } }
    by_sid        = { sid: (user_id, set(conversation_id)) }

    A user is a participant of a conversation while at least one of its
    connections is subscribed. Not synchronized on its own: the hub holds
    the lock.
    """

    def __init__(self):
        self.subscriptions = {}
        self.by_sid = {}

    # =====================================================
    #   JOIN / LEAVE
    # =====================================================

    def join_conversation(self, user_id, conversation_id, sid):
        """Subscribe one connection. Joining twice changes nothing."""
        user_id = str(user_id)
        conversation_id = str(conversation_id)

        members = self.subscriptions.setdefault(conversation_id, {})
        members.setdefault(user_id, set()).add(sid)

        _, convs = self.by_sid.setdefault(sid, (user_id, set()))
        convs.add(conversation_id)

        log_info("conversations", f"User {user_id} (sid={sid}) joined conversation {conversation_id}")

    def leave_conversation(self, user_id, conversation_id, sid=None) -> bool:
        """
        Unsubscribe one connection, or every connection of the user when
        sid is None. Returns True when the user is no longer a participant.
        """
        user_id = str(user_id)
        conversation_id = str(conversation_id)

        members = self.subscriptions.get(conversation_id)
        if not members or user_id not in members:
            return True

        sids = members[user_id]
        targets = list(sids) if sid is None else [sid]

        for s in targets:
            sids.discard(s)
            entry = self.by_sid.get(s)
            if entry:
                entry[1].discard(conversation_id)

        left = not sids
        if left:
            members.pop(user_id, None)
        if not members:
            self.subscriptions.pop(conversation_id, None)

        log_info("conversations", f"User {user_id} left conversation {conversation_id} (fully={left})")
        return left

    def drop_connection(self, sid):
        """
        Remove every subscription held by a closing connection.
        Returns the conversation ids the user fully left.
        """
        entry = self.by_sid.pop(sid, None)
        if entry is None:
            return []

        user_id, convs = entry
        fully_left = []

        for conversation_id in list(convs):
            members = self.subscriptions.get(conversation_id)
            if not members:
                continue

            sids = members.get(user_id)
            if sids is None:
                continue

            sids.discard(sid)
            if not sids:
                members.pop(user_id, None)
                fully_left.append(conversation_id)
            if not members:
                self.subscriptions.pop(conversation_id, None)

        return fully_left

    # =====================================================
    #   QUERIES
    # =====================================================

    def get_conversation_participants(self, conversation_id):
        return list(self.subscriptions.get(str(conversation_id), {}).keys())

    def get_conversation_participants_count(self, conversation_id) -> int:
        return len(self.subscriptions.get(str(conversation_id), {}))

    def get_conversation_sids(self, conversation_id, exclude_user=None):
        sids = []
        for user_id, user_sids in self.subscriptions.get(str(conversation_id), {}).items():
            if exclude_user is not None and user_id == str(exclude_user):
                continue
            sids.extend(user_sids)
        return sids

    def get_connection_conversations(self, sid):
        entry = self.by_sid.get(sid)
        return set(entry[1]) if entry else set()

    def get_user_conversations(self, user_id):
        user_id = str(user_id)
        return [c for c, members in self.subscriptions.items() if user_id in members]

    def is_participant(self, user_id, conversation_id) -> bool:
        return str(user_id) in self.subscriptions.get(str(conversation_id), {})

    def conversation_count(self) -> int:
        return len(self.subscriptions)
