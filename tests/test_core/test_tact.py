"""Tests for tact.py module."""

from unittest.mock import MagicMock, patch

import httpx
import pytest

from ngdp_fetch.core.config import TACTConfig
from ngdp_fetch.core.tact import BPSVParser, TACTClient

VERSIONS = """Region!STRING:0|BuildConfig!HEX:16|CDNConfig!HEX:16|BuildId!DEC:4|VersionsName!String:0
## seqn = 2241282
us|be2bb98dc28aee05bbee519393696cdb|fac77b9ca52c84ac28ad83a7dbe1c829|61559|11.1.7.61559
eu|be2bb98dc28aee05bbee519393696cdb|fac77b9ca52c84ac28ad83a7dbe1c829|61559|11.1.7.61559
"""

CDNS = """Name!STRING:0|Path!STRING:0|Hosts!STRING:0|Servers!STRING:0|ConfigPath!STRING:0
## seqn = 2241011
us|tpr/wow|level3.blizzard.com us.cdn.blizzard.com||tpr/configs/data
"""


class TestBPSVParser:
    """Test BPSV manifest parsing."""

    def test_parse(self):
        rows = BPSVParser().parse(VERSIONS)
        assert len(rows) == 2
        assert rows[0]["Region"] == "us"
        assert rows[0]["VersionsName"] == "11.1.7.61559"

    def test_short_row(self):
        rows = BPSVParser().parse("A!STRING:0|B!STRING:0\nonly\n")
        assert rows == [{"A": "only", "B": ""}]

    def test_empty(self):
        assert BPSVParser().parse("") == []


class TestTACTClient:
    """Test TACTClient class."""

    def _client(self, cache, region="us"):
        client = TACTClient(region, "wow", TACTConfig(max_retries=1), cache)
        client._fetch_with_retry = MagicMock(
            side_effect=lambda url: VERSIONS if url.endswith("/versions") else CDNS
        )
        return client

    def test_build_url(self, cache):
        client = TACTClient("eu", "wow_classic", cache=cache)
        assert client._build_url("versions") == "https://eu.version.battle.net/wow_classic/versions"

    def test_get_version_config(self, cache):
        config = self._client(cache).get_version_config()

        assert config is not None
        assert config.build_config == "be2bb98dc28aee05bbee519393696cdb"
        assert config.cdn_config == "fac77b9ca52c84ac28ad83a7dbe1c829"
        assert config.version == "11.1.7.61559"
        assert config.hosts == ["http://level3.blizzard.com", "http://us.cdn.blizzard.com"]
        assert config.cdn_path == "tpr/wow"

    def test_region_without_cdn_row(self, cache):
        config = self._client(cache, region="eu").get_version_config()
        assert config is not None
        assert config.hosts == []

    def test_region_missing(self, cache):
        assert self._client(cache, region="kr").get_version_config() is None

    def test_manifests_cached(self, cache):
        client = self._client(cache)
        client.fetch_versions()
        client.fetch_versions()
        assert client._fetch_with_retry.call_count == 1
        assert cache.get_api("tact:us:wow:versions") == VERSIONS


class TestFetchWithRetry:
    """Test HTTP retry behavior."""

    @patch("ngdp_fetch.core.tact.time.sleep")
    @patch("ngdp_fetch.core.tact.httpx.Client")
    def test_retry_then_success(self, mock_client_class, mock_sleep, cache):
        response = MagicMock()
        response.text = "manifest"
        http = mock_client_class.return_value.__enter__.return_value
        http.get.side_effect = [httpx.ConnectError("reset"), response]

        client = TACTClient(config=TACTConfig(max_retries=2), cache=cache)

        assert client._fetch_with_retry("https://us.version.battle.net/wow/versions") == "manifest"
        mock_sleep.assert_called_once_with(1)

    @patch("ngdp_fetch.core.tact.time.sleep")
    @patch("ngdp_fetch.core.tact.httpx.Client")
    def test_retries_exhausted(self, mock_client_class, mock_sleep, cache):
        http = mock_client_class.return_value.__enter__.return_value
        http.get.side_effect = httpx.ConnectError("down")

        client = TACTClient(config=TACTConfig(max_retries=2), cache=cache)

        with pytest.raises(httpx.ConnectError):
            client._fetch_with_retry("https://us.version.battle.net/wow/versions")
        assert http.get.call_count == 3
        assert mock_sleep.call_count == 2
