"""Tests for the Sonarr/Radarr API client."""

from unittest.mock import MagicMock

import pytest
import requests

from core.arr_api import ArrClient, build_api_path
from core.errors import ExternalCallError


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"x" if payload is not None else b""
    response.json.return_value = payload
    response.text = text
    response.reason = "Error"
    return response


def _client(kind="sonarr", response=None):
    session = MagicMock()
    session.headers = {}
    session.request.return_value = response or _response(payload=[])
    client = ArrClient("http://sonarr:8989/", "secret", kind=kind, min_interval=0, session=session)
    return client, session


# ============================================================================
# Paths and headers
# ============================================================================

class TestBuildApiPath:
    def test_relative_path_gets_prefix(self):
        assert build_api_path("series") == "/api/v3/series"
        assert build_api_path("/series/5") == "/api/v3/series/5"

    def test_prefix_not_added_twice(self):
        assert build_api_path("/api/v3/series") == "/api/v3/series"


class TestRequests:
    def test_api_key_header_set(self):
        _, session = _client()
        assert session.headers["X-Api-Key"] == "secret"

    def test_get_items_uses_resource_for_kind(self):
        client, session = _client(kind="radarr", response=_response(payload=[{"id": 1}]))

        assert client.get_items() == [{"id": 1}]

        method, url = session.request.call_args[0]
        assert method == "GET"
        assert url == "http://sonarr:8989/api/v3/movie"

    def test_update_item_sends_move_files(self):
        client, session = _client(response=_response(payload={"id": 5}))

        client.update_item({"id": 5, "path": "/tv/complete/Show"}, move_files=True)

        args, kwargs = session.request.call_args
        assert args == ("PUT", "http://sonarr:8989/api/v3/series/5")
        assert kwargs["params"] == {"moveFiles": "true"}
        assert kwargs["json"]["path"] == "/tv/complete/Show"

    def test_revert_update_does_not_move(self):
        client, session = _client(response=_response(payload={"id": 5}))
        client.update_item({"id": 5}, move_files=False)
        assert session.request.call_args[1]["params"] == {"moveFiles": "false"}

    def test_set_episodes_monitored_body(self):
        client, session = _client(response=_response())

        client.set_episodes_monitored([1, 2], False)

        args, kwargs = session.request.call_args
        assert args == ("PUT", "http://sonarr:8989/api/v3/episode/monitor")
        assert kwargs["json"] == {"episodeIds": [1, 2], "monitored": False}

    def test_empty_monitor_batch_makes_no_call(self):
        client, session = _client()
        client.set_episodes_monitored([], True)
        session.request.assert_not_called()

    def test_episodes_only_from_sonarr(self):
        client, _ = _client(kind="radarr")
        with pytest.raises(ValueError):
            client.get_episodes(1)

    def test_resolve_profile_ids_leaves_out_unknown(self):
        profiles = [{"id": 1, "name": "HD"}, {"id": 2, "name": "4K"}]
        client, _ = _client(response=_response(payload=profiles))
        assert client.resolve_profile_ids(["4K", "Missing"]) == {"4K": 2}


# ============================================================================
# Errors
# ============================================================================

class TestErrors:
    def test_http_error_raises_with_status(self):
        client, _ = _client(response=_response(status_code=404, text="Not Found"))

        with pytest.raises(ExternalCallError) as exc_info:
            client.get_item(99)

        assert exc_info.value.status_code == 404
        assert "HTTP 404" in str(exc_info.value)
        assert "get series 99" in str(exc_info.value)

    def test_timeout_raises(self):
        client, session = _client()
        session.request.side_effect = requests.Timeout("slow")

        with pytest.raises(ExternalCallError, match="timed out"):
            client.get_items()

    def test_connection_error_raises(self):
        client, session = _client()
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(ExternalCallError) as exc_info:
            client.get_system_status()
        assert exc_info.value.status_code is None

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            ArrClient("http://x", "k", kind="lidarr")
