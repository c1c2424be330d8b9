# ============================================
#   Rental Realtime — Cleanup Task
#   Stale typing indicators ONLY
# ============================================

from rental_realtime.logger import log_info, log_exception

# Set this to True if you want logs on every cycle
SILENT_CLEANUP = True


def start_cleanup_task(socketio, hub, interval):
    """
    Start the recurring cleanup background task.

    Expired typing entries are dropped and a typing_stop is emitted for
    each of them. Connections and subscriptions are cleaned up
    deterministically at disconnect time (see hub.close_connection).
    """
    log_info("cleanup", f"Starting cleanup background task (every {interval}s).")

    def _task():
        while True:
            try:
                socketio.sleep(interval)

                expired = hub.sweep_typing()

                if not SILENT_CLEANUP:
                    log_info("cleanup", f"Cleanup cycle executed ({expired} expired).")

            except Exception as e:
                log_exception("cleanup", f"Error during cleanup cycle: {e}")

    return socketio.start_background_task(_task)
