# shiftdesk/transport/security.py
"""
Access control for operational endpoints (/metrics).

    1. metrics_token set     -> Bearer token required
    2. metrics_token not set -> client must be on an internal network

The business routes are expected to sit behind the application's own
authenticated gateway and are not guarded here.
"""
from __future__ import annotations

import hmac
import ipaddress

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shiftdesk.config import settings
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

metrics_bearer_scheme = HTTPBearer(
    scheme_name="Metrics Token",
    description="Enter your metrics token (without 'Bearer ' prefix)",
    auto_error=False,
)


def _internal_networks() -> list[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    networks = []
    for cidr in settings.internal_networks.split(","):
        cidr = cidr.strip()
        if not cidr:
            continue
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError as e:
            logger.warning(f"Invalid CIDR in INTERNAL_NETWORKS: {cidr} - {e}")
    return networks


def _get_client_ip(request: Request) -> str:
    client_ip = request.client.host if request.client else "unknown"

    # X-Forwarded-For is client-controlled unless a trusted proxy rewrites it
    if settings.trust_proxy_headers:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()

    return client_ip


def is_internal_ip(ip_str: str) -> bool:
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(ip in network for network in _internal_networks())


def require_internal_network(request: Request) -> None:
    client_ip = _get_client_ip(request)
    if is_internal_ip(client_ip):
        return

    logger.warning(
        f"Access denied from non-internal IP: {client_ip}",
        extra={"client_ip": client_ip},
    )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def require_metrics_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
) -> None:
    """
    Dependency for /metrics.

        curl -H "Authorization: Bearer your-metrics-token" http://host/metrics
    """
    if settings.metrics_token:
        if not credentials:
            logger.warning("Metrics endpoint accessed without token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
            logger.warning("Invalid metrics token attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return

    require_internal_network(request)
