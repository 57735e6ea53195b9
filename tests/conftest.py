"""Shared test fixtures.

Provides:
- session_factory / repos: SQLAlchemy repositories on a temp SQLite file
- fake_repos: in-memory stand-ins for the url/snapshot/log repositories
- page(): build a small HTML document from SEO fields
- make_fetch(): a fetch callable serving queued HTML bodies
"""
import json
from types import SimpleNamespace

import pytest

from db import RepositoryError, init_db, make_session_factory, repositories
from models import ExtractedFields


def page(title=None, description=None, h1=None, canonical=None, robots=None, json_ld=(), raw_ld=()):
    head = []
    if title is not None:
        head.append(f"<title>{title}</title>")
    if description is not None:
        head.append(f'<meta name="description" content="{description}">')
    if canonical is not None:
        head.append(f'<link rel="canonical" href="{canonical}">')
    if robots is not None:
        head.append(f'<meta name="robots" content="{robots}">')
    for block in json_ld:
        head.append(f'<script type="application/ld+json">{json.dumps(block)}</script>')
    for text in raw_ld:
        head.append(f'<script type="application/ld+json">{text}</script>')
    body = f"<h1>{h1}</h1>" if h1 is not None else ""
    return f"<html><head>{''.join(head)}</head><body>{body}<p>body</p></body></html>"


def make_fetch(*bodies):
    """Return a fetch(url) that yields the given bodies in order, repeating the last."""
    queue = list(bodies)
    calls = []

    def fetch(url):
        calls.append(url)
        return queue.pop(0) if len(queue) > 1 else queue[0]

    fetch.calls = calls
    return fetch


class FakeUrls:
    def __init__(self):
        self.rows = {}
        self.touched = []

    def add(self, url, project_id="p1", monitoring_enabled=True, frequency="Weekly"):
        url_id = len(self.rows) + 1
        self.rows[url_id] = SimpleNamespace(id=url_id, url=url, project_id=project_id,
                                            monitoring_enabled=monitoring_enabled, frequency=frequency)
        return self.rows[url_id]

    def get(self, url_id):
        return self.rows.get(url_id)

    def touch(self, url_id, when=None):
        self.touched.append(url_id)


class FakeSnapshots:
    def __init__(self):
        self.rows = []
        self.fail = False

    def latest(self, url_id):
        mine = [r for r in self.rows if r.url_id == url_id]
        return mine[-1] if mine else None

    def add(self, url_id, content_hash, fields):
        if self.fail:
            raise RepositoryError("insert failed")
        row = SimpleNamespace(url_id=url_id, hash=content_hash,
                              fields=ExtractedFields.from_dict(json.loads(json.dumps(fields.to_dict()))))
        self.rows.append(row)
        return row


class FakeLogs:
    def __init__(self, snapshots=None):
        self.rows = []
        self.fail = False
        self.snapshots = snapshots

    def add(self, project_id, title, description, category, changes=(), url_ids=(), source="system"):
        if self.fail:
            raise RepositoryError("insert failed")
        row = SimpleNamespace(project_id=project_id, title=title, description=description,
                              category=category, changes=list(changes), url_ids=list(url_ids),
                              source=source)
        self.rows.append(row)
        return row

    def add_with_snapshot(self, url_id, content_hash, fields, project_id, title, description, category,
                          changes=(), source="system"):
        # all or nothing, like the SQL transaction
        if self.fail or self.snapshots.fail:
            raise RepositoryError("insert failed")
        self.snapshots.add(url_id, content_hash, fields)
        return self.add(project_id, title, description, category, changes, [url_id], source)


@pytest.fixture
def fake_repos():
    snapshots = FakeSnapshots()
    return SimpleNamespace(urls=FakeUrls(), snapshots=snapshots, logs=FakeLogs(snapshots))


@pytest.fixture
def session_factory(tmp_path):
    factory = make_session_factory(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(factory)
    return factory


@pytest.fixture
def repos(session_factory):
    return repositories(session_factory)
