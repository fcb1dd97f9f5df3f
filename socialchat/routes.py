import logging
from functools import wraps

from flask import Blueprint, current_app, jsonify, request, session

from .errors import ChatError, NotAuthenticated, PersistenceError

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")


def chat():
    return current_app.extensions["socialchat"]


def body():
    return request.get_json(silent=True) or {}


def current_user():
    user = session.get("user")
    if not user:
        raise NotAuthenticated("Authentication required")
    return user


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        return view(current_user(), *args, **kwargs)
    return wrapper


def handle_chat_error(e):
    if isinstance(e, PersistenceError):
        logger.error("Persistence failure on %s %s: %s", request.method, request.path, e.message)
    return jsonify(e.to_dict()), e.status


# ================== AUTH ==================

@api.route("/auth/register", methods=["POST"])
def register():
    data = body()
    user = chat().users.register(data.get("userName"), data.get("userEmail"), data.get("userPassword"))
    session["user"] = {k: user[k] for k in ("userId", "userName", "userEmail")}
    return jsonify({"success": True, "user": session["user"]})


@api.route("/auth/login", methods=["POST"])
def login():
    data = body()
    ident = chat().users.authenticate(data.get("userEmail"), data.get("userPassword"))
    session["user"] = ident
    logger.info("%s logged in", ident["userEmail"])
    return jsonify({"success": True, "user": ident})


@api.route("/auth/logout", methods=["POST"])
def logout():
    session.pop("user", None)
    return jsonify({"success": True})


@api.route("/auth/me")
@login_required
def me(user):
    return jsonify(user)


@api.route("/users")
def list_users():
    # public listing; friendship status only when logged in
    user = session.get("user")
    if user:
        users = chat().users.list_for(user["userEmail"])
    else:
        users = chat().users.list_all()
    return jsonify({"users": users})


# ================== FRIENDS ==================

@api.route("/friends")
@login_required
def list_friends(user):
    return jsonify({"friends": chat().friends.list_friends(user["userEmail"])})


@api.route("/friends/requests")
@login_required
def list_friend_requests(user):
    return jsonify({"requests": chat().friends.list_requests(user["userEmail"])})


@api.route("/friends/send-request", methods=["POST"])
@login_required
def send_friend_request(user):
    chat().friends.send_request(user["userEmail"], body().get("targetUser"))
    return jsonify({"success": True, "message": "Friend request sent successfully"})


@api.route("/friends/cancel-request", methods=["POST"])
@login_required
def cancel_friend_request(user):
    chat().friends.cancel_request(user["userEmail"], body().get("targetUser"))
    return jsonify({"success": True, "message": "Friend request canceled"})


@api.route("/friends/accept-request", methods=["POST"])
@login_required
def accept_friend_request(user):
    chat().friends.accept_request(body().get("targetUser"), user["userEmail"])
    return jsonify({"success": True, "message": "Friend request accepted"})


@api.route("/friends/reject-request", methods=["POST"])
@login_required
def reject_friend_request(user):
    chat().friends.reject_request(body().get("targetUser"), user["userEmail"])
    return jsonify({"success": True, "message": "Friend request rejected"})


@api.route("/friends/messages", methods=["POST"])
@login_required
def post_private_message(user):
    data = body()
    message = chat().friends.send_message(user["userEmail"], data.get("to"), data.get("text"))
    return jsonify({"success": True, "message": message})


@api.route("/friends/<email>/messages")
@login_required
def conversation(user, email):
    return jsonify({"messages": chat().friends.conversation(user["userEmail"], email)})


# ================== GROUPS ==================

@api.route("/groups")
def list_groups():
    return jsonify({"groups": chat().groups.list_groups()})


@api.route("/groups", methods=["POST"])
@login_required
def create_group(user):
    data = body()
    group = chat().groups.create_group(
        data.get("groupName"),
        data.get("groupDescription"),
        data.get("needRequest", False),
        user["userEmail"],
    )
    return jsonify({"success": True, "group": group})


@api.route("/groups/<name>/join", methods=["POST"])
@login_required
def join_group(user, name):
    status = chat().groups.request_join(user["userEmail"], name)
    return jsonify({"success": True, "status": status})


@api.route("/group/requests")
@login_required
def list_group_requests(user):
    requests = chat().groups.list_group_requests(user["userEmail"], request.args.get("groupName"))
    return jsonify({"requests": requests})


@api.route("/group/requests", methods=["POST"])
@login_required
def resolve_group_request(user):
    data = body()
    chat().groups.resolve_request(user["userEmail"], data.get("groupName"), data.get("userEmail"), data.get("action"))
    return jsonify({"success": True})


@api.route("/groups/<name>/messages", methods=["POST"])
@login_required
def post_group_message(user, name):
    message = chat().groups.post_message(user["userEmail"], name, body().get("text"))
    return jsonify({"success": True, "message": message})


@api.route("/groups/<name>/messages")
@login_required
def group_history(user, name):
    return jsonify({"messages": chat().groups.history(user["userEmail"], name)})


# ================== NOTIFICATIONS ==================

@api.route("/notifications")
@login_required
def list_notifications(user):
    return jsonify({"notifications": chat().friends.list_notifications(user["userEmail"])})


@api.route("/notifications/delete", methods=["POST"])
@login_required
def delete_notification(user):
    chat().friends.delete_notification(user["userEmail"], body().get("notificationId"))
    return jsonify({"success": True, "message": "Notification deleted successfully"})


def register_routes(app):
    app.register_blueprint(api)
    app.register_error_handler(ChatError, handle_chat_error)
