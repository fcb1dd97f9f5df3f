import unittest
import shutil
import tempfile
import threading
from unittest import mock

from socialchat.errors import (
    AlreadyFriends,
    AlreadyRequested,
    NotFriends,
    NotificationNotFound,
    RequestNotFound,
    ValidationError,
)
from socialchat.friends import FriendGraph
from socialchat.store import JsonFileStore, Repository
from socialchat.users import UserDirectory

ALICE = "alice@x.com"
BOB = "bob@x.com"
CAROL = "carol@x.com"


class FriendTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.repo = Repository(JsonFileStore(self.tmp))
        self.broadcaster = mock.Mock()
        self.users = UserDirectory(self.repo)
        self.friends = FriendGraph(self.repo, self.broadcaster)
        for name, email in (("Alice", ALICE), ("Bob", BOB), ("Carol", CAROL)):
            self.users.register(name, email, "password1")

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def befriend(self, a, b):
        self.friends.send_request(a, b)
        self.friends.accept_request(a, b)


class TestFriendRequests(FriendTestCase):
    def test_send_request(self):
        self.friends.send_request(ALICE, BOB)
        self.assertEqual(self.repo.get_user(ALICE)["sentRequests"], [BOB])
        self.assertEqual(self.repo.get_user(BOB)["receivedRequests"], [ALICE])
        self.broadcaster.publish.assert_called_once()
        room, event, payload = self.broadcaster.publish.call_args[0]
        self.assertEqual((room, event), ("user:bob@x.com", "friendRequest"))
        self.assertEqual(payload["from"], ALICE)

    def test_send_twice(self):
        self.friends.send_request(ALICE, BOB)
        with self.assertRaises(AlreadyRequested):
            self.friends.send_request(ALICE, BOB)
        self.assertEqual(self.repo.get_user(ALICE)["sentRequests"], [BOB])
        self.assertEqual(self.repo.get_user(BOB)["receivedRequests"], [ALICE])

    def test_reverse_pending_request(self):
        self.friends.send_request(ALICE, BOB)
        with self.assertRaises(AlreadyRequested):
            self.friends.send_request(BOB, ALICE)

    def test_already_friends(self):
        self.befriend(ALICE, BOB)
        with self.assertRaises(AlreadyFriends):
            self.friends.send_request(BOB, ALICE)

    def test_self_request(self):
        with self.assertRaises(ValidationError):
            self.friends.send_request(ALICE, ALICE)

    def test_cancel_is_idempotent(self):
        self.friends.send_request(ALICE, BOB)
        self.friends.cancel_request(ALICE, BOB)
        self.friends.cancel_request(ALICE, BOB)
        self.assertEqual(self.repo.get_user(ALICE)["sentRequests"], [])
        self.assertEqual(self.repo.get_user(BOB)["receivedRequests"], [])

    def test_accept_is_symmetric(self):
        self.befriend(ALICE, BOB)
        self.assertTrue(self.friends.is_friend(ALICE, BOB))
        self.assertTrue(self.friends.is_friend(BOB, ALICE))

        alice, bob = self.repo.get_user(ALICE), self.repo.get_user(BOB)
        self.assertEqual(alice["friends"][0]["requesterStatus"], "accepted")
        self.assertEqual(bob["friends"][0]["requesterStatus"], "received")
        for user in (alice, bob):
            self.assertEqual(user["sentRequests"], [])
            self.assertEqual(user["receivedRequests"], [])

    def test_accept_notifies_requester(self):
        self.befriend(ALICE, BOB)
        notes = self.repo.get_user(ALICE)["notifications"]
        self.assertEqual(len(notes), 1)
        self.assertEqual(notes[0]["type"], "friend_accepted_by")
        self.assertEqual(notes[0]["from"], BOB)
        room, event, _ = self.broadcaster.publish.call_args[0]
        self.assertEqual((room, event), ("user:alice@x.com", "friendRequestAccepted"))

    def test_accept_without_request(self):
        with self.assertRaises(RequestNotFound):
            self.friends.accept_request(ALICE, BOB)
        self.assertFalse(self.friends.is_friend(ALICE, BOB))

    def test_reject(self):
        self.friends.send_request(ALICE, BOB)
        self.friends.reject_request(ALICE, BOB)
        self.assertFalse(self.friends.is_friend(ALICE, BOB))
        self.assertFalse(self.friends.is_friend(BOB, ALICE))
        self.assertEqual(self.repo.get_user(BOB)["receivedRequests"], [])
        self.assertEqual(self.repo.get_user(ALICE)["notifications"][0]["type"], "friend_rejected_by")

    def test_reject_without_request(self):
        with self.assertRaises(RequestNotFound):
            self.friends.reject_request(CAROL, BOB)

    def test_list_friends_and_requests(self):
        self.befriend(ALICE, BOB)
        self.friends.send_request(ALICE, CAROL)

        friends = self.friends.list_friends(ALICE)
        self.assertEqual(len(friends), 1)
        self.assertEqual(friends[0]["friendEmail"], BOB)
        self.assertEqual(friends[0]["userName"], "Bob")
        self.assertEqual(friends[0]["requesterStatus"], "accepted")

        self.assertEqual(self.friends.list_requests(ALICE), [{"type": "sent", "from": ALICE, "to": CAROL}])
        self.assertEqual(self.friends.list_requests(CAROL), [{"type": "received", "from": ALICE, "to": CAROL}])


class TestPrivateMessages(FriendTestCase):
    def test_mirrored_logs(self):
        self.befriend(ALICE, BOB)
        self.friends.send_message(ALICE, BOB, "hi")

        mine = self.friends.conversation(ALICE, BOB)
        theirs = self.friends.conversation(BOB, ALICE)
        self.assertEqual((mine[-1]["text"], mine[-1]["status"]), ("hi", "sent"))
        self.assertEqual((theirs[-1]["text"], theirs[-1]["status"]), ("hi", "received"))
        self.assertEqual(mine[-1]["timestamp"], theirs[-1]["timestamp"])
        self.assertEqual(mine[-1]["sender"], ALICE)

    def test_broadcast_after_write(self):
        self.befriend(ALICE, BOB)
        self.broadcaster.reset_mock()
        self.friends.send_message(ALICE, BOB, "hi", skip_sid="sid-1")

        args, kwargs = self.broadcaster.publish.call_args
        self.assertEqual(args[0], "alice@x.com|bob@x.com")
        self.assertEqual(args[1], "privateMessage")
        self.assertEqual(kwargs["skip_sid"], "sid-1")

    def test_not_friends(self):
        with self.assertRaises(NotFriends):
            self.friends.send_message(ALICE, CAROL, "hi")
        self.broadcaster.publish.assert_not_called()

    def test_empty_text(self):
        self.befriend(ALICE, BOB)
        with self.assertRaises(ValidationError):
            self.friends.send_message(ALICE, BOB, "   ")

    def test_missing_reciprocal_edge_is_repaired(self):
        self.befriend(ALICE, BOB)
        self.repo.update_user(BOB, lambda u: u.update(friends=[]))

        self.friends.send_message(ALICE, BOB, "still there?")
        self.assertTrue(self.friends.is_friend(BOB, ALICE))
        self.assertEqual(self.friends.conversation(BOB, ALICE)[-1]["status"], "received")

    def test_concurrent_sends_keep_every_message(self):
        self.befriend(ALICE, BOB)

        def worker(sender, receiver):
            for i in range(15):
                self.friends.send_message(sender, receiver, f"{sender} {i}")

        threads = [
            threading.Thread(target=worker, args=(ALICE, BOB)),
            threading.Thread(target=worker, args=(BOB, ALICE)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(self.friends.conversation(ALICE, BOB)), 30)
        self.assertEqual(len(self.friends.conversation(BOB, ALICE)), 30)


class TestNotifications(FriendTestCase):
    def test_list_includes_pending_requests(self):
        self.friends.send_request(CAROL, ALICE)
        self.friends.send_request(ALICE, BOB)
        self.friends.reject_request(ALICE, BOB)

        types = sorted(n["type"] for n in self.friends.list_notifications(ALICE))
        self.assertEqual(types, ["friend_rejected_by", "friend_request"])

    def test_delete(self):
        self.befriend(ALICE, BOB)
        note = self.repo.get_user(ALICE)["notifications"][0]
        self.friends.delete_notification(ALICE, note["id"])
        self.assertEqual(self.repo.get_user(ALICE)["notifications"], [])
        with self.assertRaises(NotificationNotFound):
            self.friends.delete_notification(ALICE, note["id"])


if __name__ == "__main__":
    unittest.main()
