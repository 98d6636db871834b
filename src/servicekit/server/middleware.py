"""Cross-cutting aiohttp middleware: response compression and request logging."""

import logging
from typing import Awaitable, Callable

from aiohttp import hdrs, web
from aiohttp.typedefs import Handler

Middleware = Callable[[web.Request, Handler], Awaitable[web.StreamResponse]]


def _error_response(exc: web.HTTPException) -> web.Response:
    """Turn a raised HTTP error into a plain response that can be post-processed."""
    headers = {
        key: value
        for key, value in exc.headers.items()
        if key.lower() not in ("content-type", "content-length")
    }
    return web.Response(
        status=exc.status,
        reason=exc.reason,
        text=exc.text,
        content_type=exc.content_type,
        headers=headers,
    )


def compression_middleware(min_size: int = 1024) -> Middleware:
    """
    Build a middleware that compresses responses for clients that accept it.

    Encoding (gzip or deflate) is negotiated from the request's
    Accept-Encoding header. Error responses raised by handlers or the
    router are compressed too.

    Args:
        min_size: Bodies shorter than this many bytes are sent uncompressed

    Returns:
        aiohttp middleware
    """

    @web.middleware
    async def compress_response(request: web.Request, handler: Handler) -> web.StreamResponse:
        try:
            response = await handler(request)
        except web.HTTPError as exc:
            response = _error_response(exc)

        if response.prepared or hdrs.CONTENT_ENCODING in response.headers:
            return response
        if isinstance(response, web.Response):
            body = response.body
            if body is None:
                return response
            if isinstance(body, (bytes, bytearray)) and len(body) < min_size:
                return response
        response.enable_compression()
        return response

    return compress_response


def request_logging_middleware(logger: logging.Logger) -> Middleware:
    """
    Build a middleware that logs one line per request.

    Completed requests log ``METHOD path STATUS``; requests whose handler
    raised an unexpected error log ``Request errored: <message>`` and are
    answered with a 500.

    Args:
        logger: Shared process logger

    Returns:
        aiohttp middleware
    """

    @web.middleware
    async def log_request(request: web.Request, handler: Handler) -> web.StreamResponse:
        fields = {"method": request.method, "path": request.path_qs}
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            logger.info(
                f"{request.method} {request.path_qs} {exc.status}",
                extra={**fields, "status": exc.status},
            )
            raise
        except Exception as exc:
            logger.error(f"Request errored: {exc}", extra={**fields, "error": str(exc)})
            raise web.HTTPInternalServerError() from exc

        logger.info(
            f"{request.method} {request.path_qs} {response.status}",
            extra={**fields, "status": response.status},
        )
        return response

    return log_request
