import logging
from typing import Iterable, List, Tuple
from urllib.parse import urlsplit, urlunsplit

import httpx
from fastapi import APIRouter, Depends, Request, Response, status

from analytics_proxy.core.dependencies import get_dependencies
from analytics_proxy.core.dependency_container import DependencyContainer

logger = logging.getLogger(__name__)

router = APIRouter()

# Headers that only apply to a single transport-level connection and must not be forwarded.
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
}

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def build_upstream_url(upstream_endpoint: str, path: str, query: str) -> str:
    """Joins the request path and query onto the upstream endpoint."""
    target = urlsplit(upstream_endpoint)
    base_path = target.path.rstrip("/")
    joined_path = f"{base_path}/{path.lstrip('/')}"
    joined_query = "&".join(q for q in (target.query, query) if q)
    return urlunsplit((target.scheme, target.netloc, joined_path, joined_query, ""))


def _connection_tokens(headers: Iterable[Tuple[bytes, bytes]]) -> set[bytes]:
    tokens = set()
    for key, value in headers:
        if key.lower() == b"connection":
            tokens.update(token.strip().lower() for token in value.split(b","))
    return tokens


def filter_headers(headers: List[Tuple[bytes, bytes]], drop: Iterable[str] = ()) -> List[Tuple[bytes, bytes]]:
    """Removes hop-by-hop headers (and any extra names in `drop`), lowercasing names for ASGI."""
    excluded = {name.encode("latin-1") for name in HOP_BY_HOP_HEADERS.union(drop)}
    excluded.update(_connection_tokens(headers))
    return [(key.lower(), value) for key, value in headers if key.lower() not in excluded]


def build_upstream_headers(request: Request, upstream_hostname: str) -> List[Tuple[bytes, bytes]]:
    """Prepares the headers sent upstream.

    The Host header is replaced so that any hostname based routing performed
    by the upstream keeps working, and the client address is appended to
    X-Forwarded-For.
    """
    headers = filter_headers(request.headers.raw, drop=("host", "content-length", "x-forwarded-for"))
    headers.append((b"host", upstream_hostname.encode("latin-1")))

    if request.client:
        prior = request.headers.get("x-forwarded-for")
        forwarded_for = f"{prior}, {request.client.host}" if prior else request.client.host
        headers.append((b"x-forwarded-for", forwarded_for.encode("latin-1")))
    return headers


async def forward_request(request: Request, dependencies: DependencyContainer) -> Response:
    """Relays a request to the upstream and returns its response unchanged.

    The response body is relayed in its raw, still encoded form, together
    with its Content-Encoding header.
    """
    settings = dependencies.settings
    raw_path = request.scope.get("raw_path")
    path = raw_path.decode("latin-1") if raw_path else request.url.path
    url = build_upstream_url(settings.get_upstream_endpoint(), path, request.url.query)
    headers = build_upstream_headers(request, settings.get_upstream_hostname())
    body = await request.body()

    upstream_request = dependencies.http_client.build_request(
        method=request.method,
        url=url,
        headers=headers,
        content=body,
    )
    try:
        upstream_response = await dependencies.http_client.send(upstream_request, stream=True)
        try:
            raw_body = b"".join([chunk async for chunk in upstream_response.aiter_raw()])
        finally:
            await upstream_response.aclose()
    except httpx.HTTPError as e:
        logger.error(f"Upstream request to {url} failed: {e.__class__.__name__}: {e}")
        return Response(status_code=status.HTTP_502_BAD_GATEWAY)

    response = Response(content=raw_body, status_code=upstream_response.status_code)
    relayed = filter_headers(upstream_response.headers.raw)
    if not any(key == b"content-length" for key, _ in relayed):
        relayed.extend((key, value) for key, value in response.raw_headers if key == b"content-length")
    response.raw_headers = relayed
    return response


@router.api_route("/{full_path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_endpoint(
    request: Request,
    full_path: str,
    dependencies: DependencyContainer = Depends(get_dependencies),
) -> Response:
    """Catch-all endpoint relaying every request to the configured upstream."""
    client_ip = request.client.host if request.client else "unknown"

    logger.info(
        "Proxy request received",
        extra={
            "method": request.method,
            "path": request.url.path,
            "client_ip": client_ip,
            "user_agent": request.headers.get("user-agent", "unknown"),
        },
    )

    response = await forward_request(request, dependencies)

    logger.info(
        "Proxy response sent",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "client_ip": client_ip,
        },
    )
    return response
