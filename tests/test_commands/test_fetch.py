"""Tests for fetch command module."""

from __future__ import annotations

import json
import re
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from ngdp_fetch.__main__ import main
from ngdp_fetch.core.encoding_table import ContentMap
from ngdp_fetch.core.errors import ConstructionError
from ngdp_fetch.core.resolver import ALREADY_EXISTS, OUTCOME_LOCATION_MISS, OUTCOME_SUCCESS, ExtractionAttempt

CONTENT_HASH = bytes.fromhex("0123456789abcdef0123456789abcdef")
EKEY = bytes.fromhex("fedcba9876543210fedcba9876543210")


@pytest.fixture
def runner():
    """Create CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_resolver():
    """Resolver that serves identifier 1234 from the Remote source."""
    resolver = Mock()
    resolver.last_attempts = []

    def fetch(identifier, destination, locale=None):
        if identifier != "1234":
            return None
        Path(destination).write_bytes(b"x" * 2048)
        resolver.last_attempts = [
            ExtractionAttempt(EKEY, "Local", OUTCOME_LOCATION_MISS),
            ExtractionAttempt(EKEY, "Remote", OUTCOME_SUCCESS),
        ]
        return "Remote"

    resolver.fetch.side_effect = fetch
    resolver.resolve_identifier.side_effect = lambda identifier, locale=None: (
        CONTENT_HASH if identifier == "1234" else None
    )
    resolver.encoding.get_content_map.return_value = ContentMap(
        content_hash=CONTENT_HASH, encoding_keys=(EKEY,), file_size=2048
    )
    return resolver


def _plain(output: str) -> str:
    """Strip ANSI color codes."""
    return re.sub(r"\x1b\[[0-9;]*m", "", output)


def _invoke(runner, temp_dir, args, resolver):
    with patch("ngdp_fetch.commands.fetch.build_resolver", return_value=resolver) as build:
        result = runner.invoke(main, ["--cache-dir", str(temp_dir / "cache"), *args])
    return result, build


class TestFetchCommand:
    """Test the fetch command."""

    def test_fetch_success(self, runner, temp_dir, mock_resolver):
        destination = temp_dir / "out.bin"
        result, _ = _invoke(runner, temp_dir, ["fetch", "1234", str(destination)], mock_resolver)

        assert result.exit_code == 0
        assert "Fetched 1234 from Remote" in _plain(result.output)
        assert destination.read_bytes() == b"x" * 2048
        mock_resolver.fetch.assert_called_once_with("1234", destination, "enUS")

    def test_fetch_locale_option(self, runner, temp_dir, mock_resolver):
        destination = temp_dir / "out.bin"
        _invoke(runner, temp_dir, ["fetch", "1234", str(destination), "--locale", "deDE"], mock_resolver)
        mock_resolver.fetch.assert_called_once_with("1234", destination, "deDE")

    def test_fetch_not_found(self, runner, temp_dir, mock_resolver):
        result, _ = _invoke(runner, temp_dir, ["fetch", "9999", str(temp_dir / "out.bin")], mock_resolver)

        assert result.exit_code == 1
        assert "Not found: 9999" in _plain(result.output)

    def test_fetch_already_exists(self, runner, temp_dir, mock_resolver):
        mock_resolver.fetch.side_effect = None
        mock_resolver.fetch.return_value = ALREADY_EXISTS

        result, _ = _invoke(runner, temp_dir, ["fetch", "1234", str(temp_dir / "out.bin")], mock_resolver)

        assert result.exit_code == 0
        assert "already up to date" in _plain(result.output)

    def test_fetch_verbose_shows_attempts(self, runner, temp_dir, mock_resolver):
        result, _ = _invoke(runner, temp_dir, ["-v", "fetch", "1234", str(temp_dir / "out.bin")], mock_resolver)

        assert result.exit_code == 0
        assert "Extraction Attempts" in _plain(result.output)
        assert OUTCOME_LOCATION_MISS in _plain(result.output)

    def test_fetch_json(self, runner, temp_dir, mock_resolver):
        destination = temp_dir / "out.bin"
        result, _ = _invoke(runner, temp_dir, ["-o", "json", "fetch", "1234", str(destination)], mock_resolver)

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["source"] == "Remote"
        assert data["destination"] == str(destination)
        assert [a["source"] for a in data["attempts"]] == ["Local", "Remote"]
        assert data["attempts"][0]["encoding_key"] == EKEY.hex()

    def test_fetch_construction_error(self, runner, temp_dir):
        with patch("ngdp_fetch.commands.fetch.build_resolver",
                   side_effect=ConstructionError("No CDN hosts for wow in region us")):
            result = runner.invoke(main, ["--cache-dir", str(temp_dir / "cache"),
                                          "fetch", "1234", str(temp_dir / "out.bin")])

        assert result.exit_code == 1
        assert "No CDN hosts" in _plain(result.output)

    def test_fetch_passes_overrides(self, runner, temp_dir, mock_resolver):
        wow = temp_dir / "wow"
        _, build = _invoke(
            runner, temp_dir,
            ["--wow-path", str(wow), "-r", "eu", "--no-loose-files", "fetch", "1234", str(temp_dir / "o")],
            mock_resolver
        )

        config = build.call_args[0][0]
        assert config.wow_path == wow
        assert config.region == "eu"
        assert config.allow_loose_files is False


class TestResolveCommand:
    """Test the resolve command."""

    def test_resolve_rich(self, runner, temp_dir, mock_resolver):
        result, _ = _invoke(runner, temp_dir, ["resolve", "1234"], mock_resolver)

        assert result.exit_code == 0
        assert CONTENT_HASH.hex() in _plain(result.output)
        assert EKEY.hex() in _plain(result.output)

    def test_resolve_json(self, runner, temp_dir, mock_resolver):
        result, _ = _invoke(runner, temp_dir, ["-o", "json", "resolve", "1234"], mock_resolver)

        data = json.loads(result.stdout)
        assert data == {
            "identifier": "1234",
            "content_hash": CONTENT_HASH.hex(),
            "encoding_keys": [EKEY.hex()],
            "size": 2048,
        }

    def test_resolve_not_found(self, runner, temp_dir, mock_resolver):
        result, _ = _invoke(runner, temp_dir, ["resolve", "Missing.exe"], mock_resolver)

        assert result.exit_code == 1
        assert "Not found" in _plain(result.output)

    def test_resolve_invalid_locale(self, runner, temp_dir, mock_resolver):
        mock_resolver.resolve_identifier.side_effect = ValueError("Unknown locale: xxYY")
        result, _ = _invoke(runner, temp_dir, ["resolve", "1234", "-l", "xxYY"], mock_resolver)

        assert result.exit_code == 1
        assert "Unknown locale" in _plain(result.output)
