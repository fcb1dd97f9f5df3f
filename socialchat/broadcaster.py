"""Realtime Broadcaster: live connection and room registry.

Rooms are kept in step with Flask-SocketIO's own rooms so ``publish`` can use
a plain room emit. Room names:

- a group name
- ``"a|b"`` for a private chat, the two emails sorted
- ``"user:<email>"`` for per-user notifications
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional, Set

from .errors import NotAuthenticated

logger = logging.getLogger(__name__)


def pair_room(a, b):
    return "|".join(sorted((a, b)))


def personal_room(email):
    return f"user:{email}"


@dataclass
class ConnectionSession:
    sid: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    rooms: Set[str] = field(default_factory=set)
    current_room: Optional[str] = None

    @property
    def authenticated(self) -> bool:
        return self.user_email is not None


class Broadcaster:
    def __init__(self, socketio, namespace="/"):
        self.socketio = socketio
        self.namespace = namespace
        self._lock = threading.Lock()
        self._rooms = {}        # {room: {sid}}
        self._sessions = {}     # {sid: ConnectionSession}

    # ================== CONNECTIONS ==================

    def connect(self, sid, ident=None):
        ident = ident or {}
        sess = ConnectionSession(
            sid=sid,
            user_id=ident.get("userId"),
            user_name=ident.get("userName"),
            user_email=ident.get("userEmail"),
        )
        # counted under the lock so exactly one concurrent connect sees 1
        with self._lock:
            self._sessions[sid] = sess
            count = sum(1 for s in self._sessions.values() if s.user_email == sess.user_email)
        if sess.authenticated:
            self.join(sid, personal_room(sess.user_email))
        return sess, count

    def disconnect(self, sid):
        with self._lock:
            sess = self._sessions.pop(sid, None)
            if sess is None:
                return None
            for room in sess.rooms:
                members = self._rooms.get(room)
                if members is None:
                    continue
                members.discard(sid)
                if not members:
                    del self._rooms[room]
        # Socket.IO drops the sid from its own rooms on disconnect
        return sess

    def session(self, sid):
        with self._lock:
            return self._sessions.get(sid)

    def is_online(self, email):
        with self._lock:
            return any(s.user_email == email for s in self._sessions.values())

    # ================== ROOMS ==================

    def join(self, sid, room):
        with self._lock:
            sess = self._sessions.get(sid)
            if sess is None or not sess.authenticated:
                raise NotAuthenticated("Authentication required")
            self._rooms.setdefault(room, set()).add(sid)
            sess.rooms.add(room)
        self.socketio.server.enter_room(sid, room, namespace=self.namespace)

    def leave(self, sid, room):
        with self._lock:
            sess = self._sessions.get(sid)
            if sess is None:
                return
            sess.rooms.discard(room)
            members = self._rooms.get(room)
            if members is not None:
                members.discard(sid)
                if not members:
                    del self._rooms[room]
        self.socketio.server.leave_room(sid, room, namespace=self.namespace)

    def subscribers(self, room):
        with self._lock:
            return set(self._rooms.get(room, ()))

    # ================== DELIVERY ==================

    def publish(self, room, event, payload, skip_sid=None):
        """Best-effort delivery to every connection in ``room``."""
        try:
            self.socketio.emit(event, payload, to=room, skip_sid=skip_sid, namespace=self.namespace)
        except Exception:
            logger.warning("Broadcast of %s to %s failed", event, room, exc_info=True)

    def publish_all(self, event, payload, skip_sid=None):
        try:
            self.socketio.emit(event, payload, skip_sid=skip_sid, namespace=self.namespace)
        except Exception:
            logger.warning("Broadcast of %s failed", event, exc_info=True)
