import logging
from functools import wraps

from flask import request, session
from flask_socketio import emit

from .broadcaster import pair_room, personal_room
from .errors import AuthorizationError, ChatError, NotAuthenticated, ValidationError
from .friends import now_ms
from .users import normalize_email

logger = logging.getLogger(__name__)


def register_events(socketio, chat):
    broadcaster = chat.broadcaster

    def authed(handler):
        @wraps(handler)
        def wrapper(data=None):
            sess = broadcaster.session(request.sid)
            try:
                if sess is None or not sess.authenticated:
                    raise NotAuthenticated("Authentication required")
                return handler(sess, data if isinstance(data, dict) else {})
            except ChatError as e:
                emit("error", e.to_dict())
                return {"ok": False, **e.to_dict()}
        return wrapper

    def system(room, text):
        broadcaster.publish(room, "system", {"system": True, "text": text, "ts": now_ms()})

    def enter(sess, room):
        # one active room per connection, as when switching groups
        if sess.current_room and sess.current_room != room:
            broadcaster.leave(sess.sid, sess.current_room)
        broadcaster.join(sess.sid, room)
        sess.current_room = room

    # ================== CONNECTION ==================

    @socketio.on("connect")
    def on_connect(auth=None):
        sess, count = broadcaster.connect(request.sid, session.get("user"))
        if not sess.authenticated:
            logger.info("Anonymous connection: %s", request.sid)
            return

        email = sess.user_email
        for group_name in chat.groups.groups_of(email):
            broadcaster.join(sess.sid, group_name)

        # first connection of this user flips presence
        if count == 1:
            try:
                chat.users.set_online(email, True)
            except ChatError as e:
                logger.warning("Could not mark %s online: %s", email, e.message)
            broadcaster.publish_all("userOnline", {"userEmail": email, "userName": sess.user_name}, skip_sid=sess.sid)
        logger.info("%s connected: %s", email, sess.sid)

    @socketio.on("disconnect")
    def on_disconnect(*args):
        sess = broadcaster.disconnect(request.sid)
        if sess is None or not sess.authenticated:
            return

        email = sess.user_email
        for room in sorted(sess.rooms - {personal_room(email)}):
            system(room, f"{sess.user_name} left {room}")
        if not broadcaster.is_online(email):
            try:
                chat.users.set_online(email, False)
            except ChatError as e:
                logger.warning("Could not mark %s offline: %s", email, e.message)
            broadcaster.publish_all("userOffline", {"userEmail": email, "userName": sess.user_name})
        logger.info("%s disconnected", email)

    # ================== ROOMS ==================

    @socketio.on("join")
    @authed
    def on_join(sess, data):
        room = data.get("room")
        if not room:
            raise ValidationError("room required")

        if "|" in room:
            parts = room.split("|")
            if sess.user_email not in parts:
                raise AuthorizationError("Not a participant of this chat")
            others = [p for p in parts if p != sess.user_email]
            if len(parts) != 2 or len(others) != 1:
                raise ValidationError("Invalid private room")
            history = chat.friends.conversation(sess.user_email, others[0])
            room = pair_room(sess.user_email, others[0])
        else:
            history = chat.groups.history(sess.user_email, room)

        enter(sess, room)
        emit("history", {"room": room, "messages": history})
        if "|" not in room:
            system(room, f"{sess.user_name} joined {room}")
        return {"ok": True, "room": room}

    @socketio.on("joinPrivate")
    @authed
    def on_join_private(sess, data):
        to = data.get("to")
        if not to:
            raise ValidationError("to required")
        history = chat.friends.conversation(sess.user_email, to)
        room = pair_room(sess.user_email, normalize_email(to))
        enter(sess, room)
        emit("history", {"room": room, "messages": history})
        return {"ok": True, "room": room}

    @socketio.on("joinGroup")
    @authed
    def on_join_group(sess, data):
        name = data.get("room")
        if not name:
            raise ValidationError("room required")
        status = chat.groups.request_join(sess.user_email, name)
        if status == "pending":
            emit("joinRequestSent", {"groupName": name})
            return {"ok": True, "status": status}

        enter(sess, name)
        emit("joinedGroup", {"groupName": name})
        emit("history", {"room": name, "messages": chat.groups.history(sess.user_email, name)})
        return {"ok": True, "status": status}

    @socketio.on("leaveRoom")
    @authed
    def on_leave_room(sess, data):
        room = data.get("room")
        if not room:
            raise ValidationError("room required")
        broadcaster.leave(sess.sid, room)
        if sess.current_room == room:
            sess.current_room = None
        emit("roomLeft", {"room": room})
        return {"ok": True}

    # ================== MESSAGES ==================

    @socketio.on("sendMessage")
    @authed
    def on_send_message(sess, data):
        room = data.get("room") or sess.current_room
        if not room:
            raise ValidationError("room required")
        message = chat.groups.post_message(sess.user_email, room, data.get("text"))
        return {"ok": True, "message": message}

    @socketio.on("sendPrivateMessage")
    @authed
    def on_send_private_message(sess, data):
        message = chat.friends.send_message(sess.user_email, data.get("to"), data.get("text"), skip_sid=sess.sid)
        return {"ok": True, "message": message}

    @socketio.on("typing")
    @authed
    def on_typing(sess, data):
        to = data.get("to")
        if not to:
            raise ValidationError("to required")
        room = pair_room(sess.user_email, normalize_email(to))
        broadcaster.publish(room, "typing", {"from": sess.user_email, "typing": bool(data.get("typing"))}, skip_sid=sess.sid)
        return {"ok": True}
