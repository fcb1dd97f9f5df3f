import logging
import re
import uuid
from datetime import datetime, timezone

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import DuplicateEmail, InvalidCredentials, UserNotFound, ValidationError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MAX_NAME_LEN = 64
MAX_EMAIL_LEN = 128


def now_iso():
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email):
    return (email or "").strip().lower()


def public_user(user):
    return {k: v for k, v in user.items() if k != "passwordHash"}


def user_summary(user):
    return {
        "userId": user["userId"],
        "userName": user["userName"],
        "userEmail": user["userEmail"],
        "online": user.get("online", False),
    }


def identity(user):
    return {
        "userId": user["userId"],
        "userName": user["userName"],
        "userEmail": user["userEmail"],
    }


def friendship_status(viewer, other_email):
    if any(f["friendEmail"] == other_email for f in viewer.get("friends", [])):
        return "friend"
    if other_email in viewer.get("sentRequests", []):
        return "sent"
    if other_email in viewer.get("receivedRequests", []):
        return "received"
    return "none"


class UserDirectory:
    def __init__(self, repo, min_password_length=8):
        self.repo = repo
        self.min_password_length = min_password_length

    def register(self, name, email, password):
        name = (name or "").strip()
        email = normalize_email(email)
        if not name or not email or not password:
            raise ValidationError("Name, email and password are required")
        if len(name) > MAX_NAME_LEN:
            raise ValidationError("Name is too long")
        if len(email) > MAX_EMAIL_LEN or not EMAIL_RE.match(email):
            raise ValidationError("Invalid email address")
        if len(password) < self.min_password_length:
            raise ValidationError(f"Password must be at least {self.min_password_length} characters")

        user = {
            "userId": uuid.uuid4().hex,
            "userName": name,
            "userEmail": email,
            "passwordHash": generate_password_hash(password),
            "createdAt": now_iso(),
            "friends": [],
            "sentRequests": [],
            "receivedRequests": [],
            "groups": [],
            "notifications": [],
            "online": False,
        }
        with self.repo.locked(users=[email]):
            if self.repo.get_user(email):
                raise DuplicateEmail("Email already exists")
            self.repo.save_users(user)

        logger.info("Registered user %s", email)
        return public_user(user)

    def authenticate(self, email, password):
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self.repo.get_user(email)
        # same error for unknown email and wrong password
        if not user or not check_password_hash(user["passwordHash"], password):
            logger.info("Failed login for %s", email)
            raise InvalidCredentials("Invalid credentials")
        return identity(user)

    def get_by_id(self, user_id):
        for user in self.repo.all_users():
            if user["userId"] == user_id:
                return public_user(user)
        return None

    def get_by_email(self, email):
        user = self.repo.get_user(normalize_email(email))
        return public_user(user) if user else None

    def list_all(self):
        return [user_summary(u) for u in self.repo.all_users()]

    def list_for(self, viewer_email):
        """All users except the viewer, tagged with the viewer's friendship status."""
        viewer = self.repo.get_user(viewer_email)
        out = []
        for user in self.repo.all_users():
            if user["userEmail"] == viewer_email:
                continue
            summary = user_summary(user)
            if viewer:
                summary["friendshipStatus"] = friendship_status(viewer, user["userEmail"])
            out.append(summary)
        return out

    def set_online(self, email, online):
        """Flag a user on/offline, mirrored on every friend's edge.

        Returns the emails of the user's friends.
        """
        user = self.repo.get_user(email)
        if user is None:
            raise UserNotFound(f"User not found: {email}")
        friend_emails = [f["friendEmail"] for f in user.get("friends", [])]

        def mutate(me, *friends):
            me["online"] = online
            for friend in friends:
                for edge in friend.get("friends", []):
                    if edge["friendEmail"] == email:
                        edge["online"] = online

        self.repo.update_users([email] + friend_emails, mutate)
        logger.info("%s is now %s", email, "online" if online else "offline")
        return friend_emails
