import json
import uuid
from collections import namedtuple
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from analyzer import format_change
from config import DATABASE_URL
from models import ChangeRecord, ExtractedFields

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RepositoryError(Exception):
    pass


class TrackedUrl(Base):
    __tablename__ = "tracked_urls"
    id = Column(Integer, primary_key=True)
    project_id = Column(String, index=True, nullable=False)
    url = Column(String, nullable=False)
    monitoring_enabled = Column(Boolean, default=True, nullable=False)
    frequency = Column(String, default="Weekly", nullable=False)
    last_checked_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "url": self.url,
            "monitoring_enabled": self.monitoring_enabled,
            "frequency": self.frequency,
            "last_checked_at": self.last_checked_at.isoformat() if self.last_checked_at else None,
        }


class UrlSnapshot(Base):
    __tablename__ = "url_snapshots"
    id = Column(Integer, primary_key=True)
    url_id = Column(Integer, ForeignKey("tracked_urls.id"), index=True, nullable=False)
    hash = Column(String(64), nullable=False)
    data_json = Column(Text, nullable=False)  # JSON field set
    created_at = Column(DateTime, default=utcnow, index=True)

    @property
    def fields(self):
        return ExtractedFields.from_dict(json.loads(self.data_json))

    def to_dict(self):
        return {
            "id": self.id,
            "url_id": self.url_id,
            "hash": self.hash,
            "data": json.loads(self.data_json),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Log(Base):
    __tablename__ = "logs"
    id = Column(Integer, primary_key=True)
    public_id = Column(String(36), unique=True, nullable=False)
    project_id = Column(String, index=True, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text)
    category = Column(String, nullable=False)
    source = Column(String, default="system", nullable=False)
    changes_json = Column(Text, default="[]")       # structured ChangeRecords
    change_lines_json = Column(Text, default="[]")  # display strings
    created_at = Column(DateTime, default=utcnow, index=True)

    @property
    def changes(self):
        return [ChangeRecord.from_dict(c) for c in json.loads(self.changes_json or "[]")]

    @property
    def change_lines(self):
        return json.loads(self.change_lines_json or "[]")

    def to_dict(self):
        return {
            "public_id": self.public_id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "source": self.source,
            "changes": [c.to_dict() for c in self.changes],
            "change_lines": self.change_lines,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class LogUrl(Base):
    __tablename__ = "log_urls"
    id = Column(Integer, primary_key=True)
    log_id = Column(Integer, ForeignKey("logs.id"), index=True, nullable=False)
    url_id = Column(Integer, ForeignKey("tracked_urls.id"), index=True, nullable=False)


class MonitorRun(Base):
    __tablename__ = "monitor_runs"
    id = Column(Integer, primary_key=True)
    project_id = Column(String, index=True)
    status = Column(String, default="running", nullable=False)
    started_at = Column(DateTime, default=utcnow, index=True)
    finished_at = Column(DateTime)
    urls_checked = Column(Integer, default=0)
    changes_detected = Column(Integer, default=0)
    failures = Column(Integer, default=0)
    errors_json = Column(Text, default="[]")

    @property
    def errors(self):
        return json.loads(self.errors_json or "[]")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "status": self.status,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "urls_checked": self.urls_checked,
            "changes_detected": self.changes_detected,
            "failures": self.failures,
            "errors": self.errors,
        }


def make_session_factory(url=DATABASE_URL):
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    engine = create_engine(url, connect_args=connect_args)
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_db(session_factory):
    Base.metadata.create_all(bind=session_factory.kw["bind"])


@contextmanager
def session_scope(session_factory):
    sess = session_factory()
    try:
        yield sess
        sess.commit()
    except SQLAlchemyError as e:
        sess.rollback()
        raise RepositoryError(str(e)) from e
    finally:
        sess.close()


class SqlUrlRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def add(self, url, project_id, monitoring_enabled=True, frequency="Weekly"):
        with session_scope(self.session_factory) as sess:
            row = TrackedUrl(url=url, project_id=project_id,
                             monitoring_enabled=monitoring_enabled, frequency=frequency)
            sess.add(row)
            sess.flush()
            return row

    def get(self, url_id):
        with session_scope(self.session_factory) as sess:
            return sess.get(TrackedUrl, url_id)

    def list_enabled(self, project_id):
        with session_scope(self.session_factory) as sess:
            return (sess.query(TrackedUrl)
                    .filter_by(project_id=project_id, monitoring_enabled=True)
                    .order_by(TrackedUrl.id).all())

    def touch(self, url_id, when=None):
        with session_scope(self.session_factory) as sess:
            row = sess.get(TrackedUrl, url_id)
            if row is not None:
                row.last_checked_at = when or utcnow()


class SqlSnapshotRepository:
    """Append-only: snapshots are inserted, never updated or deleted."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def latest(self, url_id):
        with session_scope(self.session_factory) as sess:
            return (sess.query(UrlSnapshot)
                    .filter_by(url_id=url_id)
                    .order_by(UrlSnapshot.created_at.desc(), UrlSnapshot.id.desc())
                    .first())

    def add(self, url_id, content_hash, fields):
        with session_scope(self.session_factory) as sess:
            row = UrlSnapshot(url_id=url_id, hash=content_hash, data_json=json.dumps(fields.to_dict()))
            sess.add(row)
            sess.flush()
            return row

    def history(self, url_id, limit=50):
        with session_scope(self.session_factory) as sess:
            return (sess.query(UrlSnapshot)
                    .filter_by(url_id=url_id)
                    .order_by(UrlSnapshot.created_at.desc(), UrlSnapshot.id.desc())
                    .limit(limit).all())


class SqlLogRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def add(self, project_id, title, description, category, changes=(), url_ids=(), source="system"):
        """Insert a log and its url links in one transaction."""
        with session_scope(self.session_factory) as sess:
            return self._insert(sess, project_id, title, description, category, changes, url_ids, source)

    def add_with_snapshot(self, url_id, content_hash, fields, project_id, title, description, category,
                          changes=(), source="system"):
        """Insert a snapshot and the log describing it atomically; a failed log rolls back the snapshot."""
        with session_scope(self.session_factory) as sess:
            sess.add(UrlSnapshot(url_id=url_id, hash=content_hash, data_json=json.dumps(fields.to_dict())))
            return self._insert(sess, project_id, title, description, category, changes, [url_id], source)

    def _insert(self, sess, project_id, title, description, category, changes, url_ids, source):
        changes = list(changes)
        log = Log(
            public_id=str(uuid.uuid4()),
            project_id=project_id,
            title=title,
            description=description,
            category=category,
            source=source,
            changes_json=json.dumps([c.to_dict() for c in changes]),
            change_lines_json=json.dumps([format_change(c) for c in changes]),
        )
        sess.add(log)
        sess.flush()
        for url_id in url_ids:
            sess.add(LogUrl(log_id=log.id, url_id=url_id))
        return log

    def list(self, project_id, category=None, limit=100):
        with session_scope(self.session_factory) as sess:
            q = sess.query(Log).filter_by(project_id=project_id)
            if category:
                q = q.filter_by(category=category)
            return q.order_by(Log.created_at.desc(), Log.id.desc()).limit(limit).all()

    def for_url(self, url_id):
        with session_scope(self.session_factory) as sess:
            return (sess.query(Log).join(LogUrl, LogUrl.log_id == Log.id)
                    .filter(LogUrl.url_id == url_id)
                    .order_by(Log.created_at.desc(), Log.id.desc()).all())


class SqlRunRepository:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def start(self, project_id):
        with session_scope(self.session_factory) as sess:
            run = MonitorRun(project_id=project_id, status="running")
            sess.add(run)
            sess.flush()
            return run

    def finish(self, run_id, status, urls_checked, changes_detected, failures, errors):
        with session_scope(self.session_factory) as sess:
            run = sess.get(MonitorRun, run_id)
            run.status = status
            run.finished_at = utcnow()
            run.urls_checked = urls_checked
            run.changes_detected = changes_detected
            run.failures = failures
            run.errors_json = json.dumps(list(errors))
            return run

    def recent(self, limit=100):
        with session_scope(self.session_factory) as sess:
            return sess.query(MonitorRun).order_by(MonitorRun.started_at.desc()).limit(limit).all()

    def reset_stuck(self, older_than=timedelta(hours=1)):
        cutoff = utcnow() - older_than
        with session_scope(self.session_factory) as sess:
            stuck = (sess.query(MonitorRun)
                     .filter(MonitorRun.status == "running", MonitorRun.started_at < cutoff).all())
            for run in stuck:
                run.status = "failed"
                run.finished_at = utcnow()
                run.errors_json = json.dumps(run.errors + ["Run timed out (reset as stuck)"])
            return len(stuck)


Repositories = namedtuple("Repositories", "urls snapshots logs runs")


def repositories(session_factory):
    return Repositories(
        urls=SqlUrlRepository(session_factory),
        snapshots=SqlSnapshotRepository(session_factory),
        logs=SqlLogRepository(session_factory),
        runs=SqlRunRepository(session_factory),
    )
