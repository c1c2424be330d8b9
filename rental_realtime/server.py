# ============================================
#   Rental Realtime — App factory
# ============================================

import os

from flask import Flask
from flask_socketio import SocketIO

from rental_realtime import config
from rental_realtime.storage import MessageStore
from rental_realtime.hub import RealtimeHub
from rental_realtime.dispatcher import EventDispatcher
from rental_realtime.sockets import register_socket_handlers
from rental_realtime.http_api import ws_http
from rental_realtime.cleanup import start_cleanup_task
from rental_realtime.logger import log_info, log_error, set_log_file


def create_app(overrides=None):
    """
    Build one Flask app + Socket.IO server with its own hub.

    `overrides` replaces any value from rental_realtime.config
    (tests use it for DATA_DIR, ACL, token verification...).
    Returns (app, socketio).
    """
    app = Flask(__name__)
    app.config.from_object(config)
    if overrides:
        app.config.update(overrides)

    # LOG_DIR override without an explicit LOG_FILE: keep the file name, move the dir
    log_file = app.config["LOG_FILE"]
    if app.config["LOG_DIR"] != config.LOG_DIR and log_file == config.LOG_FILE:
        log_file = os.path.join(app.config["LOG_DIR"], os.path.basename(log_file))
    set_log_file(log_file)

    socketio = SocketIO(
        app,
        cors_allowed_origins=app.config["CORS_ALLOWED_ORIGINS"],
        async_mode=app.config.get("SOCKETIO_ASYNC_MODE"),
    )

    # DATA_DIR is the SINGLE SOURCE OF TRUTH for persisted messages
    data_dir = app.config["DATA_DIR"]
    os.makedirs(data_dir, exist_ok=True)
    log_info("server", f"Persistent DATA_DIR ready at: {data_dir}")

    store = MessageStore(
        data_dir,
        history_limit=app.config["HISTORY_LIMIT"],
        secret_key=app.config["MESSAGE_SECRET_KEY"],
    )
    hub = RealtimeHub(socketio, store, app.config)
    dispatcher = EventDispatcher(hub)

    app.extensions["realtime_hub"] = hub
    app.extensions["realtime_dispatcher"] = dispatcher

    register_socket_handlers(socketio, hub, dispatcher, app.config)
    app.register_blueprint(ws_http)
    log_info("server", "Socket handlers registered successfully.")

    if app.config["START_CLEANUP_TASK"]:
        try:
            start_cleanup_task(socketio, hub, app.config["CLEANUP_INTERVAL_SECONDS"])
        except Exception as e:
            log_error("server", f"Error starting cleanup task: {e}")

    return app, socketio
