import asyncio
from datetime import timedelta
from functools import partial

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from loguru import logger

from config import FREQUENCIES, STUCK_RUN_HOURS, setup_logging
from db import init_db, make_session_factory, repositories
from monitor import check_url, run_checks
from scraper import fetch_html


def create_app(session_factory=None, fetch=fetch_html):
    app = FastAPI(title="SEO change monitor")
    factory = session_factory or make_session_factory()
    repos = repositories(factory)
    app.state.repos = repos

    async def _run(fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    @app.on_event("startup")
    async def startup_event():
        setup_logging()
        init_db(factory)

    @app.post("/urls")
    async def add_url(payload: dict):
        url = (payload.get("url") or "").strip()
        project_id = payload.get("project_id")
        frequency = payload.get("frequency", "Weekly")
        if not url or not project_id:
            return JSONResponse({"error": "url and project_id are required"}, status_code=400)
        if frequency not in FREQUENCIES:
            return JSONResponse({"error": f"frequency must be one of {', '.join(FREQUENCIES)}"},
                                status_code=400)
        if not url.startswith("http"):
            url = "https://" + url
        row = await _run(repos.urls.add, url, str(project_id),
                         monitoring_enabled=bool(payload.get("monitoring_enabled", True)),
                         frequency=frequency)
        # baseline only, no log for a freshly added url
        baseline = await _run(check_url, row.id, row.project_id, True, urls=repos.urls,
                              snapshots=repos.snapshots, logs=repos.logs, fetch=fetch)
        return {"url": row.to_dict(), "baseline": baseline.to_dict()}

    @app.post("/urls/{url_id}/check")
    async def check(url_id: int, project_id: str = None, initial: bool = False):
        row = await _run(repos.urls.get, url_id)
        if row is None:
            return JSONResponse({"error": "URL not found"}, status_code=404)
        result = await _run(check_url, url_id, project_id or row.project_id, initial,
                            urls=repos.urls, snapshots=repos.snapshots, logs=repos.logs, fetch=fetch)
        return JSONResponse(result.to_dict(), status_code=422 if result.error else 200)

    @app.post("/projects/{project_id}/runs")
    async def run_project(project_id: str):
        rows = await _run(repos.urls.list_enabled, project_id)
        summary = await _run(run_checks, [r.id for r in rows], project_id, urls=repos.urls,
                             snapshots=repos.snapshots, logs=repos.logs, runs=repos.runs, fetch=fetch)
        return summary

    @app.post("/runs/reset-stuck")
    async def reset_stuck():
        n = await _run(repos.runs.reset_stuck, timedelta(hours=STUCK_RUN_HOURS))
        if n:
            logger.info(f"reset {n} stuck run(s)")
        return {"reset": n}

    @app.get("/urls/{url_id}/snapshots")
    async def snapshots(url_id: int, limit: int = 50):
        rows = await _run(repos.snapshots.history, url_id, limit)
        return {"snapshots": [r.to_dict() for r in rows]}

    @app.get("/projects/{project_id}/logs")
    async def logs(project_id: str, category: str = None, limit: int = 100):
        rows = await _run(repos.logs.list, project_id, category, limit)
        return {"logs": [r.to_dict() for r in rows]}

    return app


app = create_app()
