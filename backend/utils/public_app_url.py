"""
Approve/reject links for the pricing-override email.

The reviewer clicks these links from their inbox, so they must point at the
deployed API host. build_approval_links() is the only place they are built.
"""
import os
from typing import Dict
from urllib.parse import quote
import logging

logger = logging.getLogger(__name__)

LOCAL_API_URL = "http://localhost:8001"


def _configured_host() -> str:
    """First deployment URL found: PUBLIC_APP_URL, APP_BASE_URL, VERCEL_URL, RENDER_EXTERNAL_URL."""
    for var in ("PUBLIC_APP_URL", "APP_BASE_URL"):
        value = (os.getenv(var) or "").strip()
        if value:
            return value
    vercel_host = (os.getenv("VERCEL_URL") or "").strip()
    if vercel_host:
        return f"https://{vercel_host}"
    return (os.getenv("RENDER_EXTERNAL_URL") or "").strip()


def _in_production() -> bool:
    env = (os.getenv("ENVIRONMENT") or os.getenv("ENV") or "").strip().lower()
    return env in ("production", "prod")


def get_approval_base_url() -> str:
    """
    Base URL (no trailing slash) that approve/reject links are built on.

    Non-local hosts are forced to https. In production a missing or localhost
    URL raises ValueError so no reviewer email goes out with a dead link.
    """
    host = _configured_host().rstrip("/")
    if not host:
        if _in_production():
            raise ValueError("PUBLIC_APP_URL must be set to the API host used in approval links")
        return LOCAL_API_URL

    if "localhost" in host.lower():
        if _in_production():
            raise ValueError(f"Approval links cannot point at localhost in production (got {host})")
        logger.warning(f"Approval links point at {host}; set PUBLIC_APP_URL before sending real emails")
        return host

    if host.startswith("http://"):
        host = "https://" + host[len("http://"):]
    return host


def build_approval_links(opportunity_id: str) -> Dict[str, str]:
    base = get_approval_base_url()
    query = f"id={quote(opportunity_id, safe='')}"
    return {
        "approve": f"{base}/api/approve-opportunity?{query}",
        "reject": f"{base}/api/reject-opportunity?{query}",
    }
