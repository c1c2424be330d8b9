# ============================================
#   Rental Realtime — Typing indicators
#   Entries expire: visible for TYPING_VISIBLE_SECONDS,
#   swept after TYPING_STALE_SECONDS.
# ============================================

import time


class TypingState:
    """
    typing = { conversation_id: { user_id: (last_typing_at, display_name) } }
    """

    def __init__(self, visible_seconds=5.0, stale_seconds=10.0, clock=time.time):
        self.visible_seconds = visible_seconds
        self.stale_seconds = stale_seconds
        self._clock = clock
        self.typing = {}

    def start(self, conversation_id, user_id, display_name):
        conv = self.typing.setdefault(str(conversation_id), {})
        conv[str(user_id)] = (self._clock(), display_name)

    def stop(self, conversation_id, user_id) -> bool:
        conv = self.typing.get(str(conversation_id))
        if not conv:
            return False

        was_typing = conv.pop(str(user_id), None) is not None
        if not conv:
            self.typing.pop(str(conversation_id), None)
        return was_typing

    def get_typing_users(self, conversation_id):
        conv = self.typing.get(str(conversation_id))
        if not conv:
            return []

        now = self._clock()
        return [uid for uid, (ts, _) in conv.items() if now - ts < self.visible_seconds]

    def sweep(self, max_age=None):
        """
        Drop entries older than max_age (default: stale_seconds).
        Returns [(conversation_id, user_id, display_name), ...] removed.
        """
        max_age = self.stale_seconds if max_age is None else max_age
        now = self._clock()
        removed = []

        for conversation_id, conv in list(self.typing.items()):
            for user_id, (ts, name) in list(conv.items()):
                if now - ts > max_age:
                    conv.pop(user_id, None)
                    removed.append((conversation_id, user_id, name))

            if not conv:
                self.typing.pop(conversation_id, None)

        return removed

    def clear_user(self, user_id, conversation_ids=None):
        """
        Drop a user's typing entries (all conversations, or only the given ones).
        Returns [(conversation_id, display_name), ...] that were active.
        """
        user_id = str(user_id)
        targets = list(self.typing.keys()) if conversation_ids is None else [str(c) for c in conversation_ids]
        cleared = []

        for conversation_id in targets:
            conv = self.typing.get(conversation_id)
            if not conv or user_id not in conv:
                continue

            _, name = conv.pop(user_id)
            cleared.append((conversation_id, name))
            if not conv:
                self.typing.pop(conversation_id, None)

        return cleared

    def typing_count(self) -> int:
        return sum(len(conv) for conv in self.typing.values())
