"""Tests for the api CLI commands."""

from unittest.mock import patch

import httpx
import pytest
import typer
from typer.testing import CliRunner

from fast42 import __version__
from fast42.api import Fast42
from fast42.cli.app import app
from fast42.cli.common import parse_options
from fast42.config import LimiterConfig, Settings
from fast42.logging import reset_logging

runner = CliRunner()


@pytest.fixture(autouse=True)
def _reset_logging_state():
    """The app callback installs loguru sinks on the runner's streams."""
    yield
    reset_logging()


@pytest.fixture
def cli_settings(secrets):
    return Settings(
        _env_file=None,
        secrets=secrets,
        limiter=LimiterConfig(spacing_margin_ms=0, job_expiration_seconds=5.0),
    )


@pytest.fixture
def patched(intra, cli_settings):
    """Route the CLI's Fast42 through the fake API."""

    class CliFast42(Fast42):
        def __init__(self, **kwargs):
            super().__init__(
                settings=cli_settings,
                http_client=httpx.AsyncClient(transport=intra.transport()),
                **kwargs,
            )
            self._owns_http = True

    with (
        patch("fast42.cli.app.get_settings", return_value=cli_settings),
        patch("fast42.cli.intra.get_settings", return_value=cli_settings),
        patch("fast42.cli.intra.Fast42", CliFast42),
    ):
        yield intra


class TestGlobalFlags:
    def test_help_lists_api_group(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "api" in result.stdout
        assert "--verbose" in result.stdout
        assert "--quiet" in result.stdout

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"fast42 version {__version__}" in result.stdout

    def test_api_help(self):
        result = runner.invoke(app, ["api", "--help"])

        assert result.exit_code == 0
        assert "quota" in result.stdout
        assert "get" in result.stdout


class TestMissingSecrets:
    @pytest.mark.parametrize("command", [["api", "quota"], ["api", "get", "/projects"]])
    def test_exits_with_error(self, command):
        empty = Settings(_env_file=None)
        with (
            patch("fast42.cli.app.get_settings", return_value=empty),
            patch("fast42.cli.intra.get_settings", return_value=empty),
        ):
            result = runner.invoke(app, command)

        assert result.exit_code == 1
        assert "FAST42_SECRETS not set" in result.stdout


class TestQuotaCommand:
    def test_prints_every_key(self, patched):
        result = runner.invoke(app, ["api", "quota"])

        assert result.exit_code == 0, result.stdout
        assert "uid-0" in result.stdout
        assert "uid-1" in result.stdout
        assert "1000" in result.stdout
        assert "1001" in result.stdout
        assert "1200/1200" in result.stdout

    def test_rejected_key(self, patched):
        patched.rejected_clients.add("uid-0")

        result = runner.invoke(app, ["api", "quota"])

        assert result.exit_code == 1
        assert "Quota discovery failed" in result.stdout
        assert "Error getting access token: 401" in result.stdout


class TestGetCommand:
    def test_single_request(self, patched):
        result = runner.invoke(app, ["api", "get", "/cursus/21", "-o", "filter[campus_id]=14"])

        assert result.exit_code == 0, result.stdout
        assert "200" in result.stdout
        assert '"path": "/v2/cursus/21"' in result.stdout
        assert patched.requests[-1].url.params["filter[campus_id]"] == "14"

    def test_all_pages(self, patched):
        patched.total = 250

        result = runner.invoke(app, ["api", "get", "/cursus/21/users", "--all"])

        assert result.exit_code == 0, result.stdout
        assert "Fetched 3 item(s) in 3 page(s)" in result.stdout
        assert patched.pages_requested() == [1, 2, 3]

    def test_all_pages_with_page_size(self, patched):
        patched.total = 90

        result = runner.invoke(app, ["api", "get", "/users", "--all", "--page-size", "30"])

        assert result.exit_code == 0, result.stdout
        assert "in 3 page(s)" in result.stdout
        assert {r.url.params["page[size]"] for r in patched.requests} == {"30"}

    def test_rate_limited_pages_reported(self, patched):
        patched.total = 300
        patched.rate_limited_pages.add(2)

        result = runner.invoke(app, ["api", "get", "/projects", "--all"])

        assert result.exit_code == 0, result.stdout
        assert "Fetched 2 item(s) in 3 page(s)" in result.stdout
        assert "Rate limited" in result.stdout

    def test_malformed_option(self, patched):
        result = runner.invoke(app, ["api", "get", "/projects", "-o", "no-equals-sign"])

        assert result.exit_code != 0
        assert patched.requests == []


class TestParseOptions:
    def test_pairs(self):
        assert parse_options(["a=1", "filter[x]=y=z"]) == {"a": "1", "filter[x]": "y=z"}

    def test_empty(self):
        assert parse_options(None) == {}

    @pytest.mark.parametrize("value", ["novalue", "=value"])
    def test_invalid(self, value):
        with pytest.raises(typer.BadParameter):
            parse_options([value])
