import json
import logging
import os
import tempfile
import threading
from contextlib import ExitStack, contextmanager

from .errors import PersistenceError, UserNotFound, GroupNotFound

logger = logging.getLogger(__name__)

USERS = "users"
GROUPS = "groups"
COLLECTIONS = (USERS, GROUPS)


# ================== JSON FILE STORE ==================

class JsonFileStore:
    def __init__(self, data_dir):
        self.data_dir = data_dir
        self._locks = {c: threading.Lock() for c in COLLECTIONS}

    def _path(self, collection):
        return os.path.join(self.data_dir, f"{collection}.json")

    def _load(self, collection):
        path = self._path(collection)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.exception("Load error: %s", path)
            raise PersistenceError(f"could not read {collection}") from e

    def _save(self, collection, data):
        path = self._path(collection)
        tmp = None
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=4)
            os.replace(tmp, path)
        except OSError as e:
            if tmp and os.path.exists(tmp):
                os.remove(tmp)
            logger.exception("Save error: %s", path)
            raise PersistenceError(f"could not write {collection}") from e

    def get(self, collection, key):
        with self._locks[collection]:
            return self._load(collection).get(key)

    def put(self, collection, key, doc):
        self.put_many(collection, {key: doc})

    def put_many(self, collection, docs):
        self.put_batch({collection: docs})

    def put_batch(self, batches):
        # collections are written one file at a time; a failed write puts the
        # files already replaced back to what they held before
        collections = sorted(batches)
        with ExitStack() as stack:
            for collection in collections:
                stack.enter_context(self._locks[collection])
            before = {c: self._load(c) for c in collections}
            written = []
            try:
                for collection in collections:
                    data = dict(before[collection])
                    data.update(batches[collection])
                    self._save(collection, data)
                    written.append(collection)
            except PersistenceError:
                for collection in written:
                    try:
                        self._save(collection, before[collection])
                    except PersistenceError:
                        logger.error("Rollback of %s failed", collection)
                raise

    def all(self, collection):
        with self._locks[collection]:
            return list(self._load(collection).values())


# ================== LOCKING ==================

class KeyedLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}

    def _lock_for(self, key):
        with self._guard:
            return self._locks.setdefault(key, threading.RLock())

    @contextmanager
    def hold(self, *keys):
        # sorted acquisition keeps two-entity operations deadlock free
        with ExitStack() as stack:
            for key in sorted(set(keys)):
                lock = self._lock_for(key)
                lock.acquire()
                stack.callback(lock.release)
            yield


def user_key(email):
    return f"user:{email}"


def group_key(name):
    return f"group:{name}"


# ================== REPOSITORY ==================

class Repository:
    def __init__(self, store):
        self.store = store
        self.locks = KeyedLocks()

    def locked(self, users=(), groups=()):
        keys = [user_key(e) for e in users] + [group_key(g) for g in groups]
        return self.locks.hold(*keys)

    # --- users ---

    def get_user(self, email):
        return self.store.get(USERS, email)

    def all_users(self):
        return self.store.all(USERS)

    def save_users(self, *users):
        self.store.put_many(USERS, {u["userEmail"]: u for u in users})

    def save(self, users=(), groups=()):
        batches = {}
        if users:
            batches[USERS] = {u["userEmail"]: u for u in users}
        if groups:
            batches[GROUPS] = {g["groupName"]: g for g in groups}
        if batches:
            self.store.put_batch(batches)

    def update_user(self, email, mutator):
        return self.update_users([email], mutator)

    def update_users(self, emails, mutator):
        # mutator may raise to abort before anything is written
        with self.locked(users=emails):
            users = []
            for email in emails:
                user = self.get_user(email)
                if user is None:
                    raise UserNotFound(f"User not found: {email}")
                users.append(user)
            result = mutator(*users)
            self.save_users(*users)
            return result

    # --- groups ---

    def get_group(self, name):
        return self.store.get(GROUPS, name)

    def all_groups(self):
        return self.store.all(GROUPS)

    def save_group(self, group):
        self.store.put(GROUPS, group["groupName"], group)

    def update_group(self, name, mutator):
        with self.locked(groups=[name]):
            group = self.get_group(name)
            if group is None:
                raise GroupNotFound(f"Group not found: {name}")
            result = mutator(group)
            self.save_group(group)
            return result
