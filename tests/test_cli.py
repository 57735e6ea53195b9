import json
from unittest.mock import MagicMock, patch

import pytest

import cli
from conftest import page

pytestmark = pytest.mark.db


@pytest.fixture(autouse=True)
def keep_test_logging():
    with patch("cli.setup_logging"):
        yield


def _response(html):
    resp = MagicMock()
    resp.status_code = 200
    resp.text = html
    return resp


@patch("requests.get")
def test_add_then_check(mock_get, session_factory, capsys):
    mock_get.return_value = _response(page(title="Home"))
    assert cli.main(["add", "https://example.com/", "--project", "acme"], session_factory) == 0
    added = json.loads(capsys.readouterr().out)
    url_id = added["url"]["id"]
    assert added["baseline"]["changed"] is False

    mock_get.return_value = _response(page(title="Home", robots="noindex"))
    assert cli.main(["check", str(url_id), "--project", "acme"], session_factory) == 0
    result = json.loads(capsys.readouterr().out)
    assert result["changed"] is True
    assert result["changes"] == [
        {"field": "Meta Robots", "old": None, "new": "noindex", "category": "Technical"},
    ]


@patch("requests.get")
def test_run_exit_code_when_everything_fails(mock_get, session_factory, repos, capsys):
    mock_resp = _response("")
    mock_resp.status_code = 500
    mock_resp.reason = "Server Error"
    mock_get.return_value = mock_resp
    repos.urls.add("https://example.com/", "acme")

    assert cli.main(["run", "--project", "acme"], session_factory) == 1
    run = json.loads(capsys.readouterr().out)
    assert run["errors"] == ["https://example.com/: HTTP 500: Server Error"]


def test_check_unknown_url(session_factory, capsys):
    assert cli.main(["check", "42", "--project", "acme"], session_factory) == 1
    assert json.loads(capsys.readouterr().out)["error"] == "URL not found"


def test_frequency_choices():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["add", "https://x/", "--project", "p", "--frequency", "Hourly"])
