# ============================================
#     Rental Realtime — Main Application
# ============================================

# -------------------------------------------------
#   EVENTLET PATCH (REQUIRED FOR GUNICORN)
# -------------------------------------------------
import eventlet
eventlet.monkey_patch()

import os

# -----------------------------------------
#   ENV VARIABLES (.env / deployment secrets)
# -----------------------------------------
# Must run before rental_realtime.config is imported.
from dotenv import load_dotenv
load_dotenv()

from rental_realtime.server import create_app
from rental_realtime.logger import log_info

# =========================================
#   FLASK + SOCKET.IO
# =========================================
app, socketio = create_app()

# =========================================
#   RUN SERVER (DEV / PROD)
# =========================================
if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    log_info("app", f"Server starting on port {port}...")
    socketio.run(app, host="0.0.0.0", port=port)
