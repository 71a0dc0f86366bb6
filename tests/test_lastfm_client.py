import hashlib

import pytest
import requests

from scrobbler.errors import DecodeError, NetworkError, RemoteApiError
from scrobbler.lastfm_client import LastFMClient, sign

from conftest import make_response


def md5(text):
    return hashlib.md5(text.encode("utf-8")).hexdigest()


@pytest.fixture
def client(http):
    return LastFMClient("key", "secret", session=http)


class TestSignature:
    def test_order_independent_and_matches_md5(self):
        assert sign({"b": "2", "a": "1"}, "secret") == sign({"a": "1", "b": "2"}, "secret")
        assert sign({"b": "2", "a": "1"}, "secret") == md5("a1b2secret")

    def test_uses_raw_values(self):
        params = {"artist": "AC/DC & Friends", "track": "Thunderstruck?"}
        assert sign(params, "s") == md5("artistAC/DC & FriendstrackThunderstruck?s")

    def test_keys_sorted_by_byte_order(self):
        # uppercase sorts before lowercase
        assert sign({"b": "1", "B": "2"}, "s") == md5("B2b1s")

    def test_format_and_api_sig_are_not_signed(self):
        base = {"method": "auth.getToken", "api_key": "key"}
        assert sign({**base, "format": "json", "api_sig": "x"}, "s") == sign(base, "s")

    def test_unicode_values(self):
        assert sign({"artist": "Sigur Rós"}, "s") == md5("artistSigur Róss")


def test_build_adds_method_and_key_before_signing(client):
    request = client.build("track.updateNowPlaying", {"artist": "A", "track": "T", "album": None})
    assert request.params == {"method": "track.updateNowPlaying", "api_key": "key", "artist": "A", "track": "T"}
    assert request.signature == md5("api_keykeyartistAmethodtrack.updateNowPlayingtrackTsecret")
    payload = request.payload()
    assert payload["format"] == "json"
    assert payload["api_sig"] == request.signature


def test_write_methods_are_form_posts(client, http):
    http.post.return_value = make_response(json_data={"scrobbles": {}})
    client.send("track.scrobble", {"artist": "A", "track": "T", "timestamp": 10, "sk": "sk"})

    http.get.assert_not_called()
    _, kwargs = http.post.call_args
    body = kwargs["data"]
    assert body["format"] == "json"
    assert body["timestamp"] == "10"
    unsigned = {k: v for k, v in body.items() if k not in ("format", "api_sig")}
    assert body["api_sig"] == sign(unsigned, "secret")


def test_read_methods_use_query_string(client, http):
    http.get.return_value = make_response(json_data={"friends": {"user": []}})
    client.send("user.getFriends", {"user": "rj", "page": 1, "limit": 5})

    http.post.assert_not_called()
    _, kwargs = http.get.call_args
    assert kwargs["params"]["method"] == "user.getFriends"
    assert kwargs["params"]["limit"] == "5"


def test_error_envelope_raises_remote_error(client, http):
    http.post.return_value = make_response(json_data={"error": 9, "message": "Invalid session key"})
    with pytest.raises(RemoteApiError) as info:
        client.send("track.scrobble", {"sk": "old"})
    assert info.value.code == 9
    assert info.value.message == "Invalid session key"
    assert info.value.is_auth_error


def test_error_envelope_on_http_error_status(client, http):
    http.post.return_value = make_response(403, json_data={"error": 14, "message": "Unauthorized Token"})
    with pytest.raises(RemoteApiError) as info:
        client.send("auth.getSession", {"token": "t"})
    assert info.value.code == 14


def test_http_error_without_envelope(client, http):
    http.get.return_value = make_response(502, text="Bad Gateway")
    with pytest.raises(RemoteApiError) as info:
        client.send("user.getInfo")
    assert info.value.code == 502
    assert "Bad Gateway" in info.value.message


def test_transport_failure_is_network_error(client, http):
    http.post.side_effect = requests.ConnectionError("name resolution failed")
    with pytest.raises(NetworkError):
        client.send("track.scrobble", {})


def test_undecodable_success_body(client, http):
    http.post.return_value = make_response(200, text="<html>ok</html>")
    with pytest.raises(DecodeError) as info:
        client.send("track.scrobble", {})
    assert info.value.raw == "<html>ok</html>"


def test_undecodable_body_allowed_for_fire_and_forget(client, http):
    http.post.return_value = make_response(200, text="")
    assert client.send("track.updateNowPlaying", {}, allow_empty=True) == {}


def test_authorization_url(client):
    url = client.authorization_url("tok123")
    assert url.startswith("https://www.last.fm/api/auth/?")
    assert "api_key=key" in url
    assert "token=tok123" in url


def test_missing_credentials():
    with pytest.raises(ValueError):
        LastFMClient("", "secret")


def test_remote_error_classification():
    assert RemoteApiError(29, "Rate limit exceeded").is_rate_limited
    assert RemoteApiError(16, "Temporarily unavailable").is_retryable
    assert not RemoteApiError(6, "Invalid parameters").is_retryable
    assert not RemoteApiError(6, "Invalid parameters").is_auth_error


def test_token_request_is_a_get(client, http):
    http.get.return_value = make_response(json_data={"token": "tok"})
    assert client.send("auth.getToken") == {"token": "tok"}
    http.post.assert_not_called()
    assert http.get.call_args[1]["params"]["method"] == "auth.getToken"


def test_session_exchange_is_a_post(client, http):
    http.post.return_value = make_response(json_data={"session": {"key": "sk"}})
    client.send("auth.getSession", {"token": "tok"})
    http.get.assert_not_called()
