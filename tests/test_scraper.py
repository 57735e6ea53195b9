"""Tests for fetching and SEO field extraction."""
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import page
from scraper import HEADERS, FetchError, extract_fields, fetch_html


class TestExtractFields:

    def test_basic_fields(self):
        html = page(title="  Home  ", description="About us", h1=" Welcome ",
                    canonical="https://example.com/", robots="noindex, nofollow")
        f = extract_fields(html)
        assert f.title == "Home"
        assert f.meta_description == "About us"
        assert f.h1 == "Welcome"
        assert f.canonical == "https://example.com/"
        assert f.meta_robots == "noindex, nofollow"
        assert f.json_ld is None

    def test_missing_fields_are_none(self):
        f = extract_fields("<html><body><p>nothing</p></body></html>")
        assert f.to_dict() == {
            "title": None, "meta_description": None, "h1": None,
            "canonical": None, "meta_robots": None, "json_ld": None,
        }

    def test_blank_title_is_none(self):
        assert extract_fields("<title>   </title>").title is None

    def test_first_h1_wins(self):
        f = extract_fields("<h1>First</h1><h1>Second</h1>")
        assert f.h1 == "First"

    def test_empty_and_garbage_input(self):
        assert extract_fields("").title is None
        assert extract_fields(None).h1 is None
        assert extract_fields("<<<not html>>>").title is None

    def test_single_json_ld_is_object(self):
        f = extract_fields(page(json_ld=[{"@type": "Article", "headline": "A"}]))
        assert f.json_ld == {"@type": "Article", "headline": "A"}
        assert f.parse_errors == []

    def test_multiple_json_ld_is_list_in_document_order(self):
        f = extract_fields(page(json_ld=[{"@type": "Organization"}, {"@type": "WebSite"}]))
        assert f.json_ld == [{"@type": "Organization"}, {"@type": "WebSite"}]

    def test_malformed_json_ld_skipped(self):
        f = extract_fields(page(json_ld=[{"@type": "Article"}], raw_ld=["{not json"]))
        assert f.json_ld == {"@type": "Article"}
        assert len(f.parse_errors) == 1
        assert f.parse_errors[0].startswith("Script 2:")

    def test_all_json_ld_malformed(self):
        f = extract_fields(page(raw_ld=["{broken", "[1,"]))
        assert f.json_ld is None
        assert len(f.parse_errors) == 2

    def test_empty_json_ld_script_ignored(self):
        f = extract_fields(page(raw_ld=["   "]))
        assert f.json_ld is None
        assert f.parse_errors == []

    def test_parse_errors_not_part_of_fields(self):
        ok = extract_fields(page(title="T"))
        noisy = extract_fields(page(title="T", raw_ld=["{bad"]))
        assert ok == noisy
        assert "parse_errors" not in noisy.to_dict()


class TestFetchHtml:

    @patch("requests.get")
    def test_returns_body(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.status_code = 200
        mock_resp.text = "<html>ok</html>"
        mock_get.return_value = mock_resp

        assert fetch_html("https://example.com", timeout=5) == "<html>ok</html>"
        _, kwargs = mock_get.call_args
        assert kwargs["timeout"] == 5
        assert kwargs["headers"] is HEADERS
        assert "Mozilla/5.0" in HEADERS["User-Agent"]
        assert HEADERS["Cache-Control"] == "no-cache"

    @patch("requests.get")
    def test_non_2xx_raises_with_status(self, mock_get):
        mock_resp = MagicMock()
        mock_resp.status_code = 503
        mock_resp.reason = "Service Unavailable"
        mock_get.return_value = mock_resp

        with pytest.raises(FetchError) as exc:
            fetch_html("https://example.com")
        assert exc.value.status_code == 503
        assert str(exc.value) == "HTTP 503: Service Unavailable"

    @patch("requests.get", side_effect=requests.Timeout("slow"))
    def test_timeout(self, mock_get):
        with pytest.raises(FetchError, match="timed out after 30s"):
            fetch_html("https://example.com", timeout=30)

    @patch("requests.get", side_effect=requests.ConnectionError("dns failure"))
    def test_connection_error(self, mock_get):
        with pytest.raises(FetchError, match="dns failure"):
            fetch_html("https://nowhere.invalid")
