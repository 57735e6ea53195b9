"""Check orchestration: fetch, extract, hash, compare, persist.

A check moves through one of three states depending on the latest stored
snapshot for the URL:

    BASELINE  no prior snapshot; store one, log "monitoring started"
    CHANGED   hash differs; store a snapshot, log the field diff
    VERIFY    hash matches; diff anyway and, if fields still differ, treat
              it as CHANGED and flag a hash collision

``is_initial_check`` forces baseline behaviour: snapshots are still written
but no log is ever created.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Optional, Protocol

from loguru import logger

from analyzer import diff_fields, primary_category
from canonical import compute_hash
from config import MAX_WORKERS
from db import RepositoryError
from models import Category, CheckResult
from scraper import FetchError, extract_fields, fetch_html


class UrlRepository(Protocol):
    def get(self, url_id) -> Optional[Any]: ...
    def touch(self, url_id, when=None) -> None: ...


class SnapshotRepository(Protocol):
    def latest(self, url_id) -> Optional[Any]: ...
    def add(self, url_id, content_hash, fields) -> Any: ...


class LogRepository(Protocol):
    def add(self, project_id, title, description, category, changes=(), url_ids=(), source="system") -> Any: ...
    def add_with_snapshot(self, url_id, content_hash, fields, project_id, title, description, category,
                          changes=(), source="system") -> Any: ...


# url ids with a check in flight; entries are removed when the check ends
_in_flight = set()
_in_flight_guard = threading.Lock()


def _claim(url_id):
    with _in_flight_guard:
        if url_id in _in_flight:
            return False
        _in_flight.add(url_id)
        return True


def _release(url_id):
    with _in_flight_guard:
        _in_flight.discard(url_id)


def check_url(url_id, project_id, is_initial_check=False, *, urls, snapshots, logs, fetch=fetch_html):
    if not _claim(url_id):
        logger.warning(f"[check_url] check already running for url {url_id}, skipping")
        return CheckResult(error="Check already in progress")
    try:
        return _check_url(url_id, project_id, is_initial_check, urls, snapshots, logs, fetch)
    finally:
        _release(url_id)


def _check_url(url_id, project_id, is_initial_check, urls, snapshots, logs, fetch):
    try:
        record = urls.get(url_id)
    except RepositoryError as e:
        logger.error(f"[check_url] error loading url {url_id}: {e}")
        return CheckResult(error="Failed to load URL")
    if record is None:
        return CheckResult(error="URL not found")
    url = record.url

    try:
        html = fetch(url)
    except FetchError as e:
        logger.error(f"[check_url] fetch failed for {url}: {e}")
        return CheckResult(error=str(e), url=url)
    current = extract_fields(html, url=url)
    current_hash = compute_hash(current)
    warnings = list(current.parse_errors)
    logger.info(f"[check_url] {url} (id={url_id}) hash={current_hash}")

    try:
        latest = snapshots.latest(url_id)
    except RepositoryError as e:
        logger.error(f"[check_url] error fetching snapshot for {url}: {e}")
        return CheckResult(error="Failed to fetch snapshot", url=url)

    if latest is None:
        logger.info(f"[check_url] no previous snapshot for {url}, creating baseline")
        if is_initial_check:
            err = _save_snapshot(snapshots, url_id, current_hash, current)
        else:
            err = _save_with_log(logs, url_id, current_hash, current, project_id, "URL Monitoring Started",
                                 f"Started monitoring {url}", Category.TECHNICAL, [])
        if err:
            return CheckResult(error=err, url=url, warnings=warnings)
        _touch(urls, url_id)
        return CheckResult(changed=False, url=url, warnings=warnings)

    changes = diff_fields(latest.fields, current)
    hash_matched = latest.hash == current_hash

    if hash_matched and not changes:
        logger.info(f"[check_url] no changes confirmed for {url}")
        _touch(urls, url_id)
        return CheckResult(changed=False, url=url, warnings=warnings)

    if hash_matched:
        logger.error(f"[check_url] hash collision detected for {url}: hash matched "
                     f"but {len(changes)} field difference(s) found")
    elif not changes:
        logger.warning(f"[check_url] hash changed for {url} but no field differences found")

    changed = not is_initial_check and bool(changes)
    if changed:
        description = f"Changes detected on {url}"
        if hash_matched:
            description += " (hash collision detected)"
        err = _save_with_log(logs, url_id, current_hash, current, project_id, "URL Content Changed",
                             description, primary_category(changes), changes)
    else:
        err = _save_snapshot(snapshots, url_id, current_hash, current)
    if err:
        return CheckResult(error=err, url=url, warnings=warnings)
    if changed:
        logger.info(f"[check_url] log created for {url}: {len(changes)} field(s) changed")

    _touch(urls, url_id)
    return CheckResult(
        changed=changed,
        url=url,
        changes=changes if changed else None,
        hash_collision=hash_matched,
        warnings=warnings,
    )


def _save_snapshot(snapshots, url_id, content_hash, fields):
    try:
        snapshots.add(url_id, content_hash, fields)
    except RepositoryError as e:
        logger.error(f"[check_url] error inserting snapshot for url {url_id}: {e}")
        return "Failed to save snapshot"
    return None


def _save_with_log(logs, url_id, content_hash, fields, project_id, title, description, category, changes):
    # snapshot and log commit together, so a failed log leaves no snapshot behind
    try:
        logs.add_with_snapshot(url_id, content_hash, fields, project_id, title, description,
                               category, changes=changes)
    except RepositoryError as e:
        logger.error(f"[check_url] error creating log for url {url_id}: {e}")
        return "Failed to create log"
    return None


def _touch(urls, url_id):
    try:
        urls.touch(url_id)
    except RepositoryError as e:
        logger.error(f"[check_url] error updating last_checked_at for url {url_id}: {e}")


def run_checks(url_ids: Iterable, project_id, *, urls, snapshots, logs, runs,
               fetch=fetch_html, max_workers=MAX_WORKERS):
    """Check a batch of URLs, recording the run in ``runs``.

    One URL failing never stops the others. Returns a summary dict with the
    run row and per-URL results.
    """
    url_ids = list(url_ids)
    run = runs.start(project_id)
    logger.info(f"[run_checks] run {run.id}: checking {len(url_ids)} url(s) for project {project_id}")

    def _one(url_id):
        try:
            return url_id, check_url(url_id, project_id, urls=urls, snapshots=snapshots,
                                     logs=logs, fetch=fetch)
        except Exception as e:
            logger.exception(f"[run_checks] unexpected error checking url {url_id}")
            return url_id, CheckResult(error=f"Unexpected error: {e}")

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        results = list(pool.map(_one, url_ids))

    errors, changes_detected, failures = [], 0, 0
    for url_id, result in results:
        label = result.url or f"url {url_id}"
        if result.error:
            failures += 1
            errors.append(f"{label}: {result.error}")
        elif result.changed:
            changes_detected += 1
        errors.extend(f"{label}: JSON-LD {w}" for w in result.warnings)

    status = "failed" if url_ids and failures == len(url_ids) else "completed"
    run = runs.finish(run.id, status, len(url_ids), changes_detected, failures, errors)
    logger.info(f"[run_checks] run {run.id} {status}: {len(url_ids)} checked, "
                f"{changes_detected} changed, {failures} failed")
    return {
        "run": run.to_dict(),
        "results": [dict(url_id=url_id, **result.to_dict()) for url_id, result in results],
    }
