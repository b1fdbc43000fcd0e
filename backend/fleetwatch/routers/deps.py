"""Shared router dependencies resolved from application state."""
import ipaddress

from fastapi import Request

from ..config import settings
from ..services.audit import AuditRecorder, RequestMeta
from ..use_cases.dispatch import Dispatcher


def get_audit(request: Request) -> AuditRecorder:
    return request.app.state.audit


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


def _client_ip(request: Request, trust_proxy_headers: bool) -> str | None:
    if trust_proxy_headers:
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            try:
                ipaddress.ip_address(real_ip)
                return real_ip
            except ValueError:
                pass

        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # X-Forwarded-For may contain a list: client, proxy1, proxy2
            candidate = forwarded.split(",")[0].strip()
            try:
                ipaddress.ip_address(candidate)
                return candidate
            except ValueError:
                pass

    return request.client.host if request.client else None


def get_request_meta(request: Request) -> RequestMeta:
    """Client address and user agent for audit entries."""
    return RequestMeta(
        ip_address=_client_ip(request, settings.TRUST_PROXY_HEADERS),
        user_agent=request.headers.get("user-agent"),
    )
