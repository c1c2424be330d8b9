# ============================================
#   Rental Realtime — Connection Registry
#   sid → connection record, user_id → sids
# ============================================

import time
from datetime import datetime, timezone

from rental_realtime.logger import log_info


STATUSES = ("online", "away", "busy", "offline")


def to_iso(ts):
    """Epoch seconds → ISO-8601 UTC string (None stays None)."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class ConnectionRegistry:
    """
    Tracks every open connection and, derived from it, the set of online users.

    connections = {
        sid: {
            "sid": str,
            "user_id": str,
            "display_name": str,
            "connected_at": float,
            "last_activity": float,
            "status": str,
            "metadata": dict,
        }
    }
    user_sids = { user_id: set(sid) }   # a user is online iff its set is non-empty

    Not synchronized on its own: the hub holds the lock.
    """

    def __init__(self, clock=time.time):
        self._clock = clock
        self.connections = {}
        self.user_sids = {}

    # =====================================================
    #   OPEN / CLOSE
    # =====================================================

    def add_connection(self, sid, user_id, display_name, metadata=None) -> bool:
        """
        Register a connection. Returns True when this is the user's first
        connection (the user just came online).

        Registering an sid twice overwrites the previous record; if the sid
        was bound to another user it is detached from that user first.
        """
        user_id = str(user_id)
        previous = self.connections.get(sid)
        if previous and previous["user_id"] != user_id:
            self.remove_connection(sid)

        came_online = not self.user_sids.get(user_id)

        now = self._clock()
        self.connections[sid] = {
            "sid": sid,
            "user_id": user_id,
            "display_name": display_name,
            "connected_at": previous["connected_at"] if previous and previous["user_id"] == user_id else now,
            "last_activity": now,
            "status": "online",
            "metadata": dict(metadata or {}),
        }
        self.user_sids.setdefault(user_id, set()).add(sid)

        log_info(
            "registry",
            f"Connection added: sid={sid} user={user_id} total={len(self.user_sids[user_id])}",
        )
        return came_online

    def remove_connection(self, sid, user_id=None) -> bool:
        """
        Deregister a connection. Returns True when the user has no
        remaining connections (the user just went offline).
        """
        conn = self.connections.pop(sid, None)
        if conn is None:
            return False

        uid = conn["user_id"]
        if user_id is not None and str(user_id) != uid:
            log_info("registry", f"remove_connection: sid={sid} belongs to {uid}, not {user_id}")

        sids = self.user_sids.get(uid)
        if sids is None:
            return False

        sids.discard(sid)
        if sids:
            log_info("registry", f"Connection removed: sid={sid} user={uid} remaining={len(sids)}")
            return False

        self.user_sids.pop(uid, None)
        log_info("registry", f"Connection removed: sid={sid} user={uid} now offline")
        return True

    # =====================================================
    #   QUERIES
    # =====================================================

    def get_connection(self, sid):
        return self.connections.get(sid)

    def get_online_users(self):
        return list(self.user_sids.keys())

    def is_user_online(self, user_id) -> bool:
        return bool(self.user_sids.get(str(user_id)))

    def get_user_connections(self, user_id):
        return list(self.user_sids.get(str(user_id), ()))

    def get_user_connection_count(self, user_id) -> int:
        return len(self.user_sids.get(str(user_id), ()))

    def connection_count(self) -> int:
        return len(self.connections)

    def user_count(self) -> int:
        return len(self.user_sids)

    # =====================================================
    #   ACTIVITY / STATUS
    # =====================================================

    def update_user_activity(self, user_id):
        """Advisory only: nothing is evicted based on it."""
        now = self._clock()
        for sid in self.user_sids.get(str(user_id), ()):
            self.connections[sid]["last_activity"] = now

    def set_user_status(self, user_id, status):
        for sid in self.user_sids.get(str(user_id), ()):
            self.connections[sid]["status"] = status

    def get_user_presence(self, user_id) -> dict:
        user_id = str(user_id)
        sids = self.user_sids.get(user_id)

        if not sids:
            return {
                "userId": user_id,
                "isOnline": False,
                "connectionCount": 0,
                "status": "offline",
            }

        conns = [self.connections[sid] for sid in sids]
        latest = max(conns, key=lambda c: c["last_activity"])

        return {
            "userId": user_id,
            "isOnline": True,
            "connectionCount": len(conns),
            "lastActivity": to_iso(latest["last_activity"]),
            "status": latest["status"],
        }
