import logging
import time
import uuid

from .broadcaster import pair_room, personal_room
from .errors import (
    AlreadyFriends,
    AlreadyRequested,
    NotFriends,
    NotificationNotFound,
    RequestNotFound,
    ValidationError,
)
from .users import normalize_email, now_iso

logger = logging.getLogger(__name__)


def now_ms():
    return int(time.time() * 1000)


def find_edge(user, email):
    for edge in user.get("friends", []):
        if edge["friendEmail"] == email:
            return edge
    return None


def add_edge(user, email, status, online=False):
    edge = find_edge(user, email)
    if edge is None:
        edge = {"friendEmail": email, "requesterStatus": status, "messages": [], "online": online}
        user.setdefault("friends", []).append(edge)
    return edge


def _discard(items, value):
    return [x for x in (items or []) if x != value]


def clean_text(text, max_len):
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Message text is required")
    if len(text) > max_len:
        raise ValidationError(f"Message is longer than {max_len} characters")
    return text


class FriendGraph:
    def __init__(self, repo, broadcaster, max_message_length=2000):
        self.repo = repo
        self.broadcaster = broadcaster
        self.max_message_length = max_message_length

    def _pair(self, a, b):
        a, b = normalize_email(a), normalize_email(b)
        if not a or not b:
            raise ValidationError("Target user and current user are required")
        if a == b:
            raise ValidationError("You cannot befriend yourself")
        return a, b

    # ================== QUERIES ==================

    def is_friend(self, a, b):
        user = self.repo.get_user(normalize_email(a))
        return user is not None and find_edge(user, normalize_email(b)) is not None

    def list_friends(self, email):
        user = self.repo.get_user(email)
        if user is None:
            return []
        users = {u["userEmail"]: u for u in self.repo.all_users()}
        out = []
        for edge in user.get("friends", []):
            friend = users.get(edge["friendEmail"], {})
            out.append({
                "friendEmail": edge["friendEmail"],
                "requesterStatus": edge.get("requesterStatus"),
                "online": friend.get("online", False),
                "userName": friend.get("userName"),
                "userId": friend.get("userId"),
                "messageCount": len(edge.get("messages", [])),
            })
        return out

    def list_requests(self, email):
        user = self.repo.get_user(email)
        if user is None:
            return []
        reqs = [{"type": "sent", "from": email, "to": to} for to in user.get("sentRequests", [])]
        reqs += [{"type": "received", "from": frm, "to": email} for frm in user.get("receivedRequests", [])]
        return reqs

    def conversation(self, a, b):
        """``a``'s copy of the conversation with ``b``."""
        a, b = self._pair(a, b)
        user = self.repo.get_user(a)
        edge = find_edge(user, b) if user else None
        if edge is None:
            raise NotFriends("You can only read conversations with friends")
        return list(edge.get("messages", []))

    # ================== REQUEST LIFECYCLE ==================

    def send_request(self, a, b):
        a, b = self._pair(a, b)

        def mutate(me, target):
            if find_edge(me, b) or find_edge(target, a):
                raise AlreadyFriends("Users are already friends")
            if (b in me.get("sentRequests", []) or a in target.get("receivedRequests", [])
                    or b in me.get("receivedRequests", []) or a in target.get("sentRequests", [])):
                raise AlreadyRequested("Friend request already sent")
            me.setdefault("sentRequests", []).append(b)
            target.setdefault("receivedRequests", []).append(a)

        self.repo.update_users([a, b], mutate)
        logger.info("Friend request %s -> %s", a, b)
        self.broadcaster.publish(personal_room(b), "friendRequest", {"from": a, "to": b, "timestamp": now_ms()})

    def cancel_request(self, a, b):
        a, b = self._pair(a, b)

        def mutate(me, target):
            me["sentRequests"] = _discard(me.get("sentRequests"), b)
            target["receivedRequests"] = _discard(target.get("receivedRequests"), a)

        self.repo.update_users([a, b], mutate)
        logger.info("Friend request %s -> %s canceled", a, b)

    def accept_request(self, a, b):
        """``b`` accepts the pending request sent by ``a``."""
        a, b = self._pair(a, b)
        ts = now_ms()

        def mutate(requester, me):
            if a not in me.get("receivedRequests", []) and b not in requester.get("sentRequests", []):
                raise RequestNotFound("Friend request not found")
            add_edge(requester, b, "accepted", online=me.get("online", False))
            add_edge(me, a, "received", online=requester.get("online", False))
            me["receivedRequests"] = _discard(me.get("receivedRequests"), a)
            requester["sentRequests"] = _discard(requester.get("sentRequests"), b)
            requester.setdefault("notifications", []).insert(0, {
                "id": f"accepted_{uuid.uuid4().hex}",
                "type": "friend_accepted_by",
                "title": "Friend Request Accepted",
                "message": f"{b} accepted your friend request",
                "from": b,
                "timestamp": ts,
                "read": False,
            })

        self.repo.update_users([a, b], mutate)
        logger.info("Friend request %s -> %s accepted", a, b)
        self.broadcaster.publish(personal_room(a), "friendRequestAccepted", {"from": b, "to": a, "timestamp": ts})

    def reject_request(self, a, b):
        """``b`` rejects the pending request sent by ``a``."""
        a, b = self._pair(a, b)
        ts = now_ms()

        def mutate(requester, me):
            if a not in me.get("receivedRequests", []) and b not in requester.get("sentRequests", []):
                raise RequestNotFound("Friend request not found")
            me["receivedRequests"] = _discard(me.get("receivedRequests"), a)
            requester["sentRequests"] = _discard(requester.get("sentRequests"), b)
            requester.setdefault("notifications", []).insert(0, {
                "id": f"rejected_{uuid.uuid4().hex}",
                "type": "friend_rejected_by",
                "title": "Friend Request Rejected",
                "message": f"{b} rejected your friend request",
                "from": b,
                "timestamp": ts,
                "read": False,
            })

        self.repo.update_users([a, b], mutate)
        logger.info("Friend request %s -> %s rejected", a, b)
        self.broadcaster.publish(personal_room(a), "friendRequestRejected", {"from": b, "to": a, "timestamp": ts})

    # ================== MESSAGES ==================

    def send_message(self, a, b, text, skip_sid=None):
        a, b = self._pair(a, b)
        text = clean_text(text, self.max_message_length)
        timestamp = now_iso()

        def mutate(sender, receiver):
            out_edge = find_edge(sender, b)
            if out_edge is None:
                raise NotFriends("You can only message friends")
            in_edge = find_edge(receiver, a)
            if in_edge is None:
                # repair a one-sided friendship before writing both copies
                logger.warning("Missing reciprocal friend edge %s -> %s", b, a)
                other = "received" if out_edge.get("requesterStatus") == "accepted" else "accepted"
                in_edge = add_edge(receiver, a, other, online=sender.get("online", False))
            sent = {"text": text, "sender": a, "status": "sent", "timestamp": timestamp}
            out_edge.setdefault("messages", []).append(sent)
            in_edge.setdefault("messages", []).append(dict(sent, status="received"))
            return sent

        message = self.repo.update_users([a, b], mutate)
        self.broadcaster.publish(pair_room(a, b), "privateMessage", dict(message, to=b), skip_sid=skip_sid)
        return message

    # ================== NOTIFICATIONS ==================

    def list_notifications(self, email):
        user = self.repo.get_user(email)
        if user is None:
            return []
        notifications = list(user.get("notifications", []))
        ts = now_ms()
        for frm in user.get("receivedRequests", []):
            notifications.append({
                "id": f"friend_req_{frm}",
                "type": "friend_request",
                "title": "Friend Request",
                "message": f"{frm} sent you a friend request",
                "from": frm,
                "timestamp": ts,
                "read": False,
            })
        for to in user.get("sentRequests", []):
            notifications.append({
                "id": f"sent_req_{to}",
                "type": "friend_request_sent",
                "title": "Friend Request Sent",
                "message": f"You sent a friend request to {to}",
                "to": to,
                "timestamp": ts,
                "read": True,
            })
        notifications.sort(key=lambda n: n.get("timestamp", 0), reverse=True)
        return notifications

    def delete_notification(self, email, notification_id):
        if not notification_id:
            raise ValidationError("Notification ID is required")

        def mutate(user):
            before = user.get("notifications", [])
            after = [n for n in before if n.get("id") != notification_id]
            if len(after) == len(before):
                raise NotificationNotFound("Notification not found")
            user["notifications"] = after

        self.repo.update_user(email, mutate)
