"""
GHL (GoHighLevel) integration settings.
Process-wide constants for the CRM location, pipeline stages and internal reviewer.
Values come from the environment (.env loaded by server.py / database.py).
"""
import os

GHL_API_KEY_ENV = "GHL_API_KEY"

GHL_LOCATION_ID = os.getenv("GHL_LOCATION_ID", "NFWWwK7qd0rXqtNyOINy")
GHL_BASE_URL = os.getenv("GHL_BASE_URL", "https://services.leadconnectorhq.com").rstrip("/")
GHL_MCP_ENDPOINT = os.getenv("GHL_MCP_ENDPOINT", "https://services.leadconnectorhq.com/mcp/")
GHL_API_VERSION = os.getenv("GHL_API_VERSION", "2021-07-28")
GHL_REQUEST_TIMEOUT_SECONDS = float(os.getenv("GHL_REQUEST_TIMEOUT_SECONDS", "30"))
GHL_USE_TOOL_PROTOCOL = os.getenv("GHL_USE_TOOL_PROTOCOL", "true").strip().lower() != "false"

# Pipeline stage an approved opportunity is moved to
PROPOSAL_SENT_STAGE_ID = os.getenv("GHL_PROPOSAL_SENT_STAGE_ID", "a5b1b5c3-proposal-sent")

# Internal reviewer who receives override approval requests and rejection notices
REVIEWER_CONTACT_ID = os.getenv("GHL_REVIEWER_CONTACT_ID", "357NYkROmrFIMPiAdpUc")
REVIEWER_NAME = os.getenv("GHL_REVIEWER_NAME", "Josh Collins")

SALES_EMAIL_FROM = os.getenv("SALES_EMAIL_FROM", "sales-intake@nuesynergy.com")


def get_ghl_api_key() -> str:
    """Current CRM credential (read per call so a rotated secret takes effect)."""
    return (os.getenv(GHL_API_KEY_ENV) or "").strip()


def get_ghl_headers(api_key: str) -> dict:
    """Headers for direct REST calls."""
    if not api_key or not api_key.strip():
        raise ValueError("GHL_API_KEY is not configured.")
    return {
        "Authorization": f"Bearer {api_key.strip()}",
        "Version": GHL_API_VERSION,
        "Accept": "application/json",
    }
