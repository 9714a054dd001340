"""Tests for ChannelRegistry."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conftest import FakeTransport

from relay_server.core.channels import ChannelRegistry
from relay_server.core.sessions import SessionRegistry
from relay_server.core.types import Session


def _registries(*session_ids):
    sessions = SessionRegistry()
    for session_id in session_ids:
        sessions.register(Session(session_id=session_id, transport=FakeTransport()))
    return sessions, ChannelRegistry(sessions)


# =========================================================================
# Channel lifecycle
# =========================================================================


class TestChannelLifecycle:
    def test_add_channel(self):
        _, channels = _registries()
        assert channels.add_channel("news") is True
        assert channels.check_channel("news") is True
        assert channels.get("news").client_writable is False

    def test_add_existing_channel_fails(self):
        _, channels = _registries("s1")
        channels.add_channel("news")
        channels.add_member("news", "s1")
        assert channels.add_channel("news") is False
        assert channels.is_member("s1", "news") is True

    def test_remove_channel_twice(self):
        _, channels = _registries()
        channels.add_channel("news")
        assert channels.remove_channel("news") is True
        assert channels.remove_channel("news") is False
        assert len(channels) == 0

    def test_ensure_channel_is_idempotent(self):
        _, channels = _registries()
        first = channels.ensure_channel("news", client_writable=True)
        second = channels.ensure_channel("news")
        assert first is second
        assert channels.is_writable_by_clients("news") is True

    def test_writable_flag(self):
        _, channels = _registries()
        assert channels.is_writable_by_clients("missing") is False
        channels.add_channel("chat")
        assert channels.is_writable_by_clients("chat") is False
        channels.add_channel("board", client_writable=True)
        assert channels.is_writable_by_clients("board") is True


# =========================================================================
# Membership
# =========================================================================


class TestMembership:
    def test_add_member_creates_channel(self):
        _, channels = _registries("s1")
        assert channels.add_member("news", "s1") is True
        assert channels.is_member("s1", "news") is True

    def test_add_member_requires_live_session(self):
        _, channels = _registries()
        assert channels.add_member("news", "ghost") is False
        assert channels.check_channel("news") is False

    def test_remove_member(self):
        _, channels = _registries("s1")
        channels.add_member("news", "s1")
        assert channels.remove_member("news", "s1") is True
        assert channels.remove_member("news", "s1") is False
        assert channels.remove_member("missing", "s1") is False

    def test_remove_session_strips_every_channel(self):
        _, channels = _registries("s1", "s2")
        for name in ("a", "b", "c"):
            channels.add_member(name, "s1")
        channels.add_member("a", "s2")
        assert sorted(channels.remove_session("s1")) == ["a", "b", "c"]
        assert channels.channels_for_session("s1") == []
        assert channels.channels_for_session("s2") == ["a"]


# =========================================================================
# Delivery
# =========================================================================


class TestPublish:
    def test_publish_reaches_members_only(self):
        sessions, channels = _registries("s1", "s2", "s3")
        channels.add_member("news", "s1")
        channels.add_member("news", "s2")
        sent = channels.publish("news", {"channel": "news", "text": "hi"})
        assert sent == 2
        assert sessions.find("s1").transport.sent == [{"channel": "news", "text": "hi"}]
        assert sessions.find("s3").transport.sent == []

    def test_publish_unknown_channel(self):
        _, channels = _registries("s1")
        assert channels.publish("missing", {"text": "hi"}) == 0

    def test_publish_skips_and_prunes_stale_members(self):
        sessions, channels = _registries("s1", "s2", "s3", "s4")
        for session_id in ("s1", "s2", "s3", "s4"):
            channels.add_member("news", session_id)
        sessions.unregister("s4")

        assert channels.publish("news", {"channel": "news", "text": "hi"}) == 3
        assert channels.get("news").session_ids == {"s1", "s2", "s3"}

    def test_publish_does_not_count_refused_sends(self):
        sessions, channels = _registries("s1")
        sessions.register(Session(session_id="full", transport=FakeTransport(accepting=False)))
        channels.add_member("news", "s1")
        channels.add_member("news", "full")
        assert channels.publish("news", {"text": "hi"}) == 1

    def test_broadcast_all(self):
        sessions, channels = _registries("s1", "s2")
        assert channels.broadcast_all({"broadcast": True}) == 2
        assert sessions.find("s2").transport.sent == [{"broadcast": True}]
