import logging

from .broadcaster import personal_room
from .errors import (
    GroupExists,
    GroupNotFound,
    NotAdmin,
    NotMember,
    RequestNotFound,
    UserNotFound,
    ValidationError,
)
from .friends import clean_text, now_ms
from .users import normalize_email, now_iso

logger = logging.getLogger(__name__)

MAX_GROUP_NAME_LEN = 64
ACTIONS = ("accept", "reject")


def find_membership(user, group_name):
    for entry in user.get("groups", []):
        if entry["groupName"] == group_name:
            return entry
    return None


def set_membership(user, group_name, status, roles):
    entry = find_membership(user, group_name)
    if entry is None:
        entry = {"groupName": group_name, "status": status, "roles": roles, "messages": []}
        user.setdefault("groups", []).append(entry)
    else:
        entry["status"] = status
        entry["roles"] = roles
    return entry


def group_summary(group):
    return {
        "groupName": group["groupName"],
        "groupDescription": group.get("groupDescription", ""),
        "needRequest": group.get("needRequest", False),
        "creator": group.get("creator"),
        "admins": list(group.get("admins", [])),
        "members": list(group.get("members", [])),
    }


class GroupManager:
    def __init__(self, repo, broadcaster, max_message_length=2000):
        self.repo = repo
        self.broadcaster = broadcaster
        self.max_message_length = max_message_length

    def _require_group(self, name):
        group = self.repo.get_group(name)
        if group is None:
            raise GroupNotFound(f"Group not found: {name}")
        return group

    def _require_user(self, email):
        user = self.repo.get_user(email)
        if user is None:
            raise UserNotFound(f"User not found: {email}")
        return user

    # ================== GROUPS ==================

    def create_group(self, name, description, need_request, creator):
        name = (name or "").strip()
        creator = normalize_email(creator)
        if not name or not creator:
            raise ValidationError("Group name and user required")
        # '|' and 'user:' are reserved for private and personal rooms
        if len(name) > MAX_GROUP_NAME_LEN or "|" in name or name.startswith("user:"):
            raise ValidationError("Invalid group name")

        group = {
            "groupName": name,
            "groupDescription": description or "New group created",
            "needRequest": bool(need_request),
            "creator": creator,
            "admins": [creator],
            "members": [creator],
            "requests": [],
            "createdAt": now_iso(),
        }
        with self.repo.locked(users=[creator], groups=[name]):
            if self.repo.get_group(name):
                raise GroupExists("Group already exists")
            user = self._require_user(creator)
            set_membership(user, name, "member", ["admin", "member"])
            self.repo.save(users=[user], groups=[group])

        logger.info("Group %s created by %s", name, creator)
        return group_summary(group)

    def list_groups(self):
        return [group_summary(g) for g in self.repo.all_groups()]

    def get_group(self, name):
        return group_summary(self._require_group(name))

    def groups_of(self, email):
        return [g["groupName"] for g in self.repo.all_groups() if email in g.get("members", [])]

    # ================== MEMBERSHIP ==================

    def request_join(self, email, name):
        # returns "member" or "pending"
        email = normalize_email(email)
        queued = False
        with self.repo.locked(users=[email], groups=[name]):
            group = self._require_group(name)
            user = self._require_user(email)
            if email in group["members"]:
                if find_membership(user, name) is None:
                    set_membership(user, name, "member", ["member"])
                    self.repo.save_users(user)
                return "member"
            if not group.get("needRequest"):
                group["members"].append(email)
                set_membership(user, name, "member", ["member"])
                status = "member"
            else:
                requests = group.setdefault("requests", [])
                if email not in requests:
                    requests.append(email)
                    queued = True
                set_membership(user, name, "pending", [])
                status = "pending"
            self.repo.save(users=[user], groups=[group])
            admins = list(group.get("admins", []))

        logger.info("%s join %s: %s", email, name, status)
        if queued:
            payload = {"groupName": name, "userEmail": email, "timestamp": now_ms()}
            for admin in admins:
                self.broadcaster.publish(personal_room(admin), "groupRequest", payload)
        return status

    def list_group_requests(self, admin, name=None):
        admin = normalize_email(admin)
        if name:
            group = self._require_group(name)
            if admin not in group.get("admins", []):
                raise NotAdmin("Only group admins can view requests")
            groups = [group]
        else:
            groups = [g for g in self.repo.all_groups() if admin in g.get("admins", [])]
        return [
            {"groupName": g["groupName"], "userEmail": email}
            for g in groups
            for email in g.get("requests", [])
        ]

    def resolve_request(self, admin, name, user_email, action):
        admin = normalize_email(admin)
        user_email = normalize_email(user_email)
        if not name or not user_email or action not in ACTIONS:
            raise ValidationError("Group name, user email, and action (accept|reject) required")

        with self.repo.locked(users=[user_email], groups=[name]):
            group = self._require_group(name)
            if admin not in group.get("admins", []):
                raise NotAdmin("Only group admins can manage requests")
            if user_email not in group.get("requests", []):
                raise RequestNotFound("Request not found")

            user = self.repo.get_user(user_email)
            group["requests"] = [e for e in group["requests"] if e != user_email]
            if action == "accept":
                if user_email not in group["members"]:
                    group["members"].append(user_email)
                if user:
                    set_membership(user, name, "member", ["member"])
            elif user:
                set_membership(user, name, "rejected", [])

            self.repo.save(users=[user] if user else [], groups=[group])

        logger.info("%s %sed %s into %s", admin, action, user_email, name)
        payload = {"groupName": name, "userEmail": user_email, "action": action}
        self.broadcaster.publish(name, "groupRequestHandled", payload)
        self.broadcaster.publish(personal_room(user_email), "groupRequestHandled", payload)

    # ================== MESSAGES ==================

    def post_message(self, sender, name, text):
        sender = normalize_email(sender)
        text = clean_text(text, self.max_message_length)

        with self.repo.locked(groups=[name]):
            group = self._require_group(name)
            members = list(group.get("members", []))
            if sender not in members:
                raise NotMember("You are not a member of this group")

            message = {"text": text, "sender": sender, "status": "sent", "timestamp": now_iso()}
            # user keys sort after group keys, so this nesting keeps the global order
            with self.repo.locked(users=members):
                users = []
                for email in members:
                    user = self.repo.get_user(email)
                    if user is None:
                        continue
                    entry = find_membership(user, name) or set_membership(user, name, "member", ["member"])
                    status = "sent" if email == sender else "received"
                    entry.setdefault("messages", []).append(dict(message, status=status))
                    users.append(user)
                self.repo.save_users(*users)

        self.broadcaster.publish(name, "message", dict(message, groupName=name))
        return message

    def history(self, email, name):
        email = normalize_email(email)
        group = self._require_group(name)
        if email not in group.get("members", []):
            raise NotMember("You are not a member of this group")
        user = self.repo.get_user(email)
        entry = find_membership(user, name) if user else None
        return list(entry.get("messages", [])) if entry else []
