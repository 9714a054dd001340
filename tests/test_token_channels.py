"""Tests for TokenChannelAuthenticator."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conftest import FakeTransport

from relay_server.core.sessions import SessionRegistry
from relay_server.core.token_channels import TokenChannelAuthenticator
from relay_server.core.types import Session


def _setup(*sessions):
    registry = SessionRegistry()
    for session_id, uid, auth_token in sessions:
        registry.register(
            Session(session_id=session_id, transport=FakeTransport(), uid=uid, auth_token=auth_token)
        )
    return registry, TokenChannelAuthenticator(registry)


# =========================================================================
# Claiming
# =========================================================================


class TestClaim:
    def test_token_claimable_once(self):
        _, tokens = _setup(("s1", "1", "a"), ("s2", "2", "b"))
        tokens.set_token("room", "T", {"channel": "room", "token": "T"})

        assert tokens.claim("room", "s1", "T") is True
        assert tokens.claim("room", "s2", "T") is False
        assert tokens.channels_claimed_by("s1") == ["room"]
        assert tokens.channels_claimed_by("s2") == []

    def test_claim_unknown_channel(self):
        _, tokens = _setup(("s1", "1", "a"))
        assert tokens.claim("nowhere", "s1", "T") is False

    def test_claim_wrong_token(self):
        _, tokens = _setup(("s1", "1", "a"))
        tokens.set_token("room", "T", {})
        assert tokens.claim("room", "s1", "X") is False
        assert tokens.snapshot()["room"]["tokens"] == {"T": {}}

    def test_claim_bundle_returns_joined_channels(self):
        _, tokens = _setup(("s1", "1", "a"))
        tokens.set_token("room", "T1", {})
        tokens.set_token("hall", "T2", {})
        joined = tokens.claim_bundle("s1", {"room": "T1", "hall": "bad", "void": "T3"})
        assert joined == ["room"]

    def test_release_session(self):
        _, tokens = _setup(("s1", "1", "a"))
        tokens.set_token("room", "T", {"notifyOnDisconnect": True})
        tokens.claim("room", "s1", "T")
        assert tokens.release_session("room", "s1") == {"notifyOnDisconnect": True}
        assert tokens.release_session("room", "s1") is None
        assert tokens.release_session("void", "s1") is None


# =========================================================================
# Membership and delivery
# =========================================================================


class TestMembers:
    def test_members_split_by_identity(self):
        _, tokens = _setup(("s1", "1", "a"), ("s2", None, "anon"))
        tokens.set_token("room", "T1", {})
        tokens.set_token("room", "T2", {})
        tokens.claim("room", "s1", "T1")
        tokens.claim("room", "s2", "T2")
        assert tokens.members_of("room") == {"uids": ["1"], "authTokens": ["anon"]}

    def test_members_of_unknown_channel(self):
        _, tokens = _setup()
        assert tokens.members_of("void") == {"uids": [], "authTokens": []}
        assert tokens.members_of("") == {"uids": [], "authTokens": []}

    def test_members_skip_dead_sessions(self):
        registry, tokens = _setup(("s1", "1", "a"))
        tokens.set_token("room", "T", {})
        tokens.claim("room", "s1", "T")
        registry.unregister("s1")
        assert tokens.members_of("room") == {"uids": [], "authTokens": []}

    def test_publish(self):
        registry, tokens = _setup(("s1", "1", "a"), ("s2", "2", "b"))
        tokens.set_token("room", "T", {})
        tokens.claim("room", "s1", "T")
        assert tokens.publish("room", {"channel": "room", "x": 1}) is True
        assert registry.find("s1").transport.sent == [{"channel": "room", "x": 1}]
        assert registry.find("s2").transport.sent == []

    def test_publish_unknown_channel(self):
        _, tokens = _setup()
        assert tokens.publish("void", {"channel": "void"}) is False


# =========================================================================
# Disconnect notifications
# =========================================================================


class TestCheckDisconnect:
    def test_remaining_members_notified(self):
        registry, tokens = _setup(("s1", "1", "a"), ("s2", "2", "b"))
        tokens.set_token("room", "T1", {})
        tokens.set_token("room", "T2", {})
        tokens.claim("room", "s1", "T1")
        tokens.claim("room", "s2", "T2")
        tokens.release_session("room", "s2")
        registry.unregister("s2")

        assert tokens.check_disconnect("room", "2", "2") == 1
        assert registry.find("s1").transport.sent == [
            {
                "channel": "room",
                "contentChannelNotification": True,
                "data": {"uid": "2", "type": "disconnect"},
            }
        ]

    def test_no_notification_when_identity_still_present(self):
        registry, tokens = _setup(("s1", "1", "a"), ("s2", "2", "b"))
        tokens.set_token("room", "T1", {})
        tokens.set_token("room", "T2", {})
        tokens.claim("room", "s1", "T1")
        tokens.claim("room", "s2", "T2")

        assert tokens.check_disconnect("room", "2", "2") == 0
        assert registry.find("s1").transport.sent == []

    def test_anonymous_notification_omits_auth_token(self):
        registry, tokens = _setup(("s1", "1", "a"), ("anon", None, "secret-anon-token"))
        tokens.set_token("room", "T1", {})
        tokens.set_token("room", "T2", {})
        tokens.claim("room", "s1", "T1")
        tokens.claim("room", "anon", "T2")
        tokens.release_session("room", "anon")
        registry.unregister("anon")

        assert tokens.check_disconnect("room", "secret-anon-token", None) == 1
        sent = registry.find("s1").transport.sent
        assert sent[0]["data"] == {"uid": None, "type": "disconnect"}
        assert "secret-anon-token" not in repr(sent)

    def test_unknown_channel(self):
        _, tokens = _setup()
        assert tokens.check_disconnect("void", "1", "1") == 0


class TestSnapshot:
    def test_snapshot_counts(self):
        _, tokens = _setup(("s1", "1", "a"))
        tokens.set_token("room", "T1", {"a": 1})
        tokens.set_token("room", "T2", {"b": 2})
        tokens.claim("room", "s1", "T1")
        assert tokens.snapshot() == {"room": {"tokens": {"T2": {"b": 2}}, "sessions": 1}}
        assert len(tokens) == 1
