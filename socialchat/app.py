from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
import logging
import os

from .broadcaster import Broadcaster
from .config import Config
from .database import SqliteStore
from .events import register_events
from .friends import FriendGraph
from .groups import GroupManager
from .routes import register_routes
from .store import JsonFileStore, Repository
from .users import UserDirectory

logger = logging.getLogger(__name__)


class Chat:
    """Services shared by the HTTP routes and the Socket.IO handlers."""

    def __init__(self, store, socketio, config):
        self.store = store
        self.repo = Repository(store)
        self.broadcaster = Broadcaster(socketio)
        max_len = config["MAX_MESSAGE_LENGTH"]
        self.users = UserDirectory(self.repo, min_password_length=config["MIN_PASSWORD_LENGTH"])
        self.friends = FriendGraph(self.repo, self.broadcaster, max_message_length=max_len)
        self.groups = GroupManager(self.repo, self.broadcaster, max_message_length=max_len)


def make_store(config):
    backend = config["STORE_BACKEND"]
    if backend == "sqlite":
        store = SqliteStore(config["DB_FILE"])
        store.init_db()
        return store
    if backend == "json":
        os.makedirs(config["DATA_DIR"], exist_ok=True)
        return JsonFileStore(config["DATA_DIR"])
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


def create_app(config=Config, **overrides):
    # ================== APP SETUP ==================
    app = Flask(__name__)
    app.config.from_object(config)
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    CORS(app, origins=app.config["CORS_ORIGINS"], supports_credentials=True)

    socketio = SocketIO(
        app,
        cors_allowed_origins=app.config["CORS_ORIGINS"],
        async_mode=app.config["ASYNC_MODE"],
    )

    # ================== SERVICES ==================
    chat = Chat(make_store(app.config), socketio, app.config)
    app.extensions["socialchat"] = chat

    @app.route("/")
    def index():
        return "Chat Server Running"

    register_routes(app)
    register_events(socketio, chat)

    logger.info("Chat server configured (store=%s)", app.config["STORE_BACKEND"])
    return app
