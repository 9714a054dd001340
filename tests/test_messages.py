"""Tests for frame and management request decoding."""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from relay_server.core.messages import (
    Authenticate,
    ClientMessage,
    Ping,
    decode_client_frame,
    decode_content_channel_query,
    decode_content_token_grant,
    decode_debug_toggle,
    decode_publish_request,
    is_valid_channel_name,
    is_valid_uid,
)
from relay_server.errors import MessageDecodeError

# =========================================================================
# Client frames
# =========================================================================


class TestClientFrames:
    def test_authenticate(self):
        frame = decode_client_frame(
            {"t": "authenticate", "p": {"authToken": "abc", "contentTokens": {"room": "T", "n": 5}}}
        )
        assert frame == Authenticate(auth_token="abc", content_tokens={"room": "T", "n": "5"})

    def test_authenticate_without_token(self):
        with pytest.raises(MessageDecodeError) as exc_info:
            decode_client_frame({"t": "authenticate", "p": {}})
        assert exc_info.value.code == "AUTH_TOKEN_MISSING"

    def test_authenticate_bad_content_tokens(self):
        with pytest.raises(MessageDecodeError):
            decode_client_frame({"t": "authenticate", "p": {"authToken": "a", "contentTokens": ["x"]}})
        with pytest.raises(MessageDecodeError):
            decode_client_frame({"t": "authenticate", "p": {"authToken": "a", "contentTokens": {"r": None}}})

    def test_channel_message(self):
        payload = {"type": "chat", "channel": "lobby", "text": "hi"}
        frame = decode_client_frame({"t": "message", "p": payload})
        assert isinstance(frame, ClientMessage)
        assert frame.channel == "lobby"
        assert frame.body == payload

    def test_client_message_without_channel(self):
        frame = decode_client_frame({"t": "message", "p": {"type": "dm"}})
        assert frame.channel is None

    def test_message_requires_type(self):
        with pytest.raises(MessageDecodeError):
            decode_client_frame({"t": "message", "p": {"channel": "lobby"}})

    def test_message_channel_must_be_string(self):
        with pytest.raises(MessageDecodeError):
            decode_client_frame({"t": "message", "p": {"type": "x", "channel": 5}})

    def test_ping(self):
        assert decode_client_frame({"t": "ping"}) == Ping(payload={})
        assert decode_client_frame({"t": "ping", "p": None}) == Ping(payload={})

    def test_unknown_type(self):
        with pytest.raises(MessageDecodeError) as exc_info:
            decode_client_frame({"t": "subscribe", "p": {}})
        assert exc_info.value.code == "UNKNOWN_TYPE"

    def test_non_object_frames(self):
        for frame in ([1, 2], "text", 42, None):
            with pytest.raises(MessageDecodeError):
                decode_client_frame(frame)
        with pytest.raises(MessageDecodeError):
            decode_client_frame({"t": "ping", "p": [1]})


# =========================================================================
# Management requests
# =========================================================================


class TestManagementRequests:
    def test_publish_to_channel(self):
        request = decode_publish_request({"channel": "news", "text": "hi"})
        assert request.channel == "news"
        assert request.broadcast is False
        assert request.message == {"channel": "news", "text": "hi"}

    def test_publish_broadcast_without_channel(self):
        request = decode_publish_request({"broadcast": True, "text": "hi"})
        assert request.broadcast is True
        assert request.channel is None

    def test_publish_missing_target(self):
        with pytest.raises(MessageDecodeError, match="Required parameters are missing."):
            decode_publish_request({"text": "hi"})

    def test_publish_body_must_be_object(self):
        with pytest.raises(MessageDecodeError):
            decode_publish_request(["news"])

    def test_content_token_grant(self):
        grant = decode_content_token_grant({"channel": "room", "token": "T", "notifyOnDisconnect": True})
        assert grant.channel == "room"
        assert grant.token == "T"
        assert grant.payload["notifyOnDisconnect"] is True

    def test_content_token_grant_missing_token(self):
        with pytest.raises(MessageDecodeError):
            decode_content_token_grant({"channel": "room"})

    def test_content_channel_query(self):
        assert decode_content_channel_query({"channel": "room"}).channel == "room"
        with pytest.raises(MessageDecodeError):
            decode_content_channel_query({})

    def test_debug_toggle(self):
        assert decode_debug_toggle({"debug": True}).debug is True
        assert decode_debug_toggle({"debug": "false"}).debug is False
        assert decode_debug_toggle({"debug": "on"}).debug is True
        with pytest.raises(MessageDecodeError):
            decode_debug_toggle({})


class TestValidation:
    def test_channel_names(self):
        assert is_valid_channel_name("news_2024")
        assert is_valid_channel_name("News")
        assert not is_valid_channel_name("bad-name")
        assert not is_valid_channel_name("")
        assert not is_valid_channel_name(None)

    def test_uids(self):
        assert is_valid_uid("42")
        assert not is_valid_uid("4a")
        assert not is_valid_uid("")
        assert not is_valid_uid(42)
