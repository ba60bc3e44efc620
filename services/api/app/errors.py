"""
Error taxonomy for the feed read path.

  SourceUnavailable   — backing query failed; surfaced as 503
  NotFound            — single-post lookup found no row; surfaced as 404
  InvalidFeedRequest  — scope/filter pair names no partition; surfaced as 400
  StoreUnavailable    — cache failed; recovered inside the coordinator
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Base class for feed errors."""

    status_code = 500


class SourceUnavailable(FeedError):
    status_code = 503


class NotFound(FeedError):
    status_code = 404


class InvalidFeedRequest(FeedError, ValueError):
    status_code = 400


class StoreUnavailable(FeedError):
    """The cache store could not be reached. Never surfaced to callers."""


async def _feed_error_handler(request: Request, exc: FeedError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FeedError, _feed_error_handler)
