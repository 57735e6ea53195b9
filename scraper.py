import json

import requests
from bs4 import BeautifulSoup
from loguru import logger

from config import FETCH_TIMEOUT
from models import ExtractedFields

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class FetchError(Exception):
    def __init__(self, message, url=None, status_code=None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def fetch_html(url, timeout=FETCH_TIMEOUT):
    """Return the body of ``url`` or raise FetchError. No retries."""
    try:
        r = requests.get(url, headers=HEADERS, timeout=timeout)
    except requests.Timeout as e:
        raise FetchError(f"Request timed out after {timeout}s", url=url) from e
    except requests.RequestException as e:
        raise FetchError(f"Request failed: {e}", url=url) from e
    if not 200 <= r.status_code < 300:
        raise FetchError(f"HTTP {r.status_code}: {r.reason}", url=url, status_code=r.status_code)
    return r.text


def _clean(value):
    if value is None:
        return None
    value = value.strip()
    return value or None


def _text(doc, selector):
    el = doc.select_one(selector)
    return _clean(el.get_text()) if el else None


def _attr(doc, selector, name):
    el = doc.select_one(selector)
    if el is None:
        return None
    value = el.get(name)
    if isinstance(value, list):  # multi-valued attributes such as rel
        value = " ".join(value)
    return _clean(value)


def parse_json_ld(doc):
    """Parse every ld+json script independently.

    Returns (value, errors): value is None, the single parsed payload, or a
    list of payloads in document order.
    """
    parsed, errors = [], []
    for i, script in enumerate(doc.select('script[type="application/ld+json"]'), start=1):
        text = script.string if script.string is not None else script.get_text()
        if not text or not text.strip():
            continue
        try:
            parsed.append(json.loads(text))
        except ValueError as e:
            errors.append(f"Script {i}: {e}")
    if not parsed:
        return None, errors
    if len(parsed) == 1:
        return parsed[0], errors
    return parsed, errors


def extract_fields(html, url=None):
    doc = BeautifulSoup(html or "", "html.parser")
    json_ld, errors = parse_json_ld(doc)
    if errors and json_ld is None:
        logger.warning(f"Failed to parse all JSON-LD scripts from {url or '<html>'}: {'; '.join(errors)}")
    return ExtractedFields(
        title=_text(doc, "title"),
        meta_description=_attr(doc, 'meta[name="description"]', "content"),
        h1=_text(doc, "h1"),
        canonical=_attr(doc, 'link[rel="canonical"]', "href"),
        meta_robots=_attr(doc, 'meta[name="robots"]', "content"),
        json_ld=json_ld,
        parse_errors=errors,
    )
