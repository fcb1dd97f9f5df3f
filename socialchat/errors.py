class ChatError(Exception):
    status = 400
    code = "error"

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {"error": self.message, "code": self.code}


# ================== 400 ==================

class ValidationError(ChatError):
    status = 400
    code = "validation_error"


# ================== 409 ==================

class ConflictError(ChatError):
    status = 409
    code = "conflict"


class DuplicateEmail(ConflictError):
    code = "email_exists"


class GroupExists(ConflictError):
    code = "group_exists"


class AlreadyFriends(ConflictError):
    code = "already_friends"


class AlreadyRequested(ConflictError):
    code = "already_requested"


# ================== 404 ==================

class NotFoundError(ChatError):
    status = 404
    code = "not_found"


class UserNotFound(NotFoundError):
    code = "user_not_found"


class GroupNotFound(NotFoundError):
    code = "group_not_found"


class RequestNotFound(NotFoundError):
    code = "request_not_found"


class NotificationNotFound(NotFoundError):
    code = "notification_not_found"


# ================== 401 / 403 ==================

class AuthorizationError(ChatError):
    status = 403
    code = "forbidden"


class NotAuthenticated(AuthorizationError):
    status = 401
    code = "auth_required"


class InvalidCredentials(AuthorizationError):
    status = 401
    code = "bad_credentials"


class NotFriends(AuthorizationError):
    code = "not_friends"


class NotAdmin(AuthorizationError):
    code = "not_admin"


class NotMember(AuthorizationError):
    code = "not_member"


# ================== 500 ==================

class PersistenceError(ChatError):
    status = 500
    code = "db_error"

    def to_dict(self):
        # never leak store details to clients
        return {"error": "Internal server error", "code": self.code}
