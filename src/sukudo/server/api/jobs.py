"""API handlers for jobs endpoints.

Endpoints:
    POST /api/jobs - Submit an enhancement job
    GET /api/jobs - List recent jobs
    GET /api/jobs/{job_id} - Get job detail
    GET /api/jobs/{job_id}/asset?file=NAME - Signed URL for an output
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid

from aiohttp import web

from sukudo.db.operations import get_job, list_jobs
from sukudo.db.types import JobStatus
from sukudo.jobs.exceptions import JobValidationError
from sukudo.jobs.tracking import create_enhance_job, validate_submission
from sukudo.server.errors import (
    INVALID_ID_FORMAT,
    INVALID_JSON,
    INVALID_PARAMETER,
    NOT_FOUND,
    STORAGE_ERROR,
    VALIDATION_FAILED,
    api_error,
)
from sukudo.server.middleware import (
    database_required_middleware,
    shutdown_check_middleware,
)
from sukudo.storage import ObjectNotFoundError, StorageError, output_object_path

logger = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100


def is_valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def _invalid_id(job_id: str) -> web.Response:
    return api_error(f"Invalid job id: '{job_id}'", code=INVALID_ID_FORMAT)


def _not_found(job_id: str) -> web.Response:
    return api_error(f"Job not found: {job_id}", code=NOT_FOUND, status=404)


@shutdown_check_middleware
@database_required_middleware
async def api_submit_job_handler(request: web.Request) -> web.Response:
    """Handle POST /api/jobs.

    Body: ``{"input_urls": ["inputs/<id>/talk.wav", ...], "params": {...}}``.
    Controls in params are normalized before the job is stored.

    Returns:
        201 with the queued job, or 400 for a malformed submission.
    """
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        return api_error("Request body must be valid JSON", code=INVALID_JSON)

    try:
        submission = validate_submission(payload)
    except JobValidationError as e:
        return api_error(str(e), code=VALIDATION_FAILED, details=e.field)

    pool = request["connection_pool"]
    job = await asyncio.to_thread(
        pool.call, create_enhance_job, submission.input_urls, submission.params
    )
    return web.json_response(
        job.to_dict(),
        status=201,
        headers={"Location": f"/api/jobs/{job.id}"},
    )


@shutdown_check_middleware
@database_required_middleware
async def api_jobs_handler(request: web.Request) -> web.Response:
    """Handle GET /api/jobs?status=&limit= (newest first)."""
    status: JobStatus | None = None
    status_param = request.query.get("status")
    if status_param:
        try:
            status = JobStatus(status_param)
        except ValueError:
            return api_error(
                f"Invalid status value: '{status_param}'", code=INVALID_PARAMETER
            )

    try:
        limit = int(request.query.get("limit", "50"))
    except ValueError:
        return api_error("limit must be an integer", code=INVALID_PARAMETER)
    if not 1 <= limit <= MAX_LIST_LIMIT:
        return api_error(
            f"limit must be 1-{MAX_LIST_LIMIT}", code=INVALID_PARAMETER
        )

    pool = request["connection_pool"]
    jobs = await asyncio.to_thread(pool.call, list_jobs, status, limit)
    return web.json_response({"jobs": [job.to_dict() for job in jobs]})


@shutdown_check_middleware
@database_required_middleware
async def api_job_detail_handler(request: web.Request) -> web.Response:
    """Handle GET /api/jobs/{job_id}."""
    job_id = request.match_info["job_id"]
    if not is_valid_uuid(job_id):
        return _invalid_id(job_id)

    pool = request["connection_pool"]
    job = await asyncio.to_thread(pool.call, get_job, job_id)
    if job is None:
        return _not_found(job_id)
    return web.json_response(job.to_dict())


@shutdown_check_middleware
@database_required_middleware
async def api_job_asset_handler(request: web.Request) -> web.Response:
    """Handle GET /api/jobs/{job_id}/asset?file=NAME.

    Returns ``{"url": ..., "expires_in": ...}`` with a short-lived signed
    URL for ``outputs/<job_id>/<NAME>``.
    """
    job_id = request.match_info["job_id"]
    if not is_valid_uuid(job_id):
        return _invalid_id(job_id)

    name = request.query.get("file", "")
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        return api_error("file must be a bare file name", code=INVALID_PARAMETER)

    storage = request.app.get("storage")
    if storage is None:
        return api_error(
            "Object storage not configured", code=STORAGE_ERROR, status=503
        )

    pool = request["connection_pool"]
    job = await asyncio.to_thread(pool.call, get_job, job_id)
    if job is None:
        return _not_found(job_id)

    ttl = request.app["feed_config"].asset_url_ttl
    path = output_object_path(job_id, name)
    try:
        url = await asyncio.to_thread(storage.signed_url, path, ttl)
    except ObjectNotFoundError:
        return api_error(f"Asset not found: {name}", code=NOT_FOUND, status=404)
    except StorageError as e:
        logger.error("Could not sign %s: %s", path, e)
        return api_error("Could not sign asset URL", code=STORAGE_ERROR, status=502)

    return web.json_response({"url": url, "expires_in": ttl})


def get_job_routes() -> list[tuple[str, str, object]]:
    """Return job route definitions as (method, path, handler) tuples."""
    return [
        ("POST", "/api/jobs", api_submit_job_handler),
        ("GET", "/api/jobs", api_jobs_handler),
        ("GET", "/api/jobs/{job_id}", api_job_detail_handler),
        ("GET", "/api/jobs/{job_id}/asset", api_job_asset_handler),
    ]
