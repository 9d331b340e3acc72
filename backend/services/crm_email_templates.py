"""
CRM Email Templates - Branded HTML + plaintext bodies for the sales-intake workflow.
Includes: Approval Required (reviewer), Pricing Proposal (broker), Override Rejected (reviewer),
plus the HTML confirmation pages shown after an approve/reject link is clicked.

Interpolated values are expected to be sanitised already (HTML-escaped form input).
"""
from datetime import datetime, timezone
from html import escape
from typing import Dict, Any, List, Optional

# Branding constants
COMPANY_NAME = "NueSynergy"
BRAND_COLOR_PRIMARY = "#003366"  # Navy
BRAND_COLOR_ACCENT = "#80B040"  # Green
BRAND_COLOR_DANGER = "#d32f2f"
LOGO_URL = "https://nuesynergy.com/wp-content/uploads/2023/02/nuesynergy_logo.png"


def _build_email_header(title: str) -> str:
    """Build consistent branded header."""
    return f"""
        <div style="background-color: {BRAND_COLOR_PRIMARY}; color: white; padding: 25px; text-align: center;">
            <img src="{LOGO_URL}" alt="{COMPANY_NAME}" style="max-width: 180px; width: 100%; height: auto; display: block; margin: 0 auto 12px;">
            <h2 style="margin: 0; font-weight: 300; letter-spacing: 1px;">{title}</h2>
        </div>
    """


def _build_email_footer(kind: str = "request") -> str:
    """Build consistent branded footer."""
    year = datetime.now(timezone.utc).year
    return f"""
        <div style="max-width: 600px; margin: 0 auto; color: #94a3b8; padding: 20px; text-align: center; font-size: 11px;">
            &copy; {year} {COMPANY_NAME}. All rights reserved. <br>
            This is an automated {kind} from the {COMPANY_NAME} Sales Intake Portal.
        </div>
    """


def _wrap(title: str, body: str, footer_kind: str = "request") -> str:
    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: 'Helvetica Neue', Helvetica, Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0;">
        <div style="max-width: 600px; margin: 20px auto; border: 1px solid #e0e0e0; border-radius: 8px; overflow: hidden;">
            {_build_email_header(title)}
            <div style="padding: 30px;">
                {body}
            </div>
        </div>
        {_build_email_footer(footer_kind)}
    </body>
    </html>
    """


def _pipeline_link(location_id: str) -> str:
    return f"https://app.gohighlevel.com/v2/location/{location_id}/opportunities/list"


# ============================================================================
# APPROVAL REQUIRED (sent to the reviewer when any product has a price override)
# ============================================================================

def build_approval_request_email(
    employer_name: str,
    broker_name: Optional[str],
    sales_person: Optional[str],
    total_employees: Any,
    effective_date: Optional[str],
    yearly_value: Any,
    override_products: List[Dict[str, Any]],
    approve_link: str,
    reject_link: str,
    location_id: str,
) -> Dict[str, str]:
    """
    Build 'Approval Required' email.

    Returns dict with 'subject', 'html', 'text' keys.
    """
    subject = f"Action Required: Price Override Approval for {employer_name}"

    rows = "".join(
        f"""
            <tr>
                <td style="padding: 10px; border-bottom: 1px solid #eee;">{p.get('product') or ''}</td>
                <td style="padding: 10px; border-bottom: 1px solid #eee;">{p.get('employees') or '0'}</td>
                <td style="padding: 10px; border-bottom: 1px solid #eee; color: {BRAND_COLOR_DANGER}; font-weight: bold;">${p.get('rate') or ''}</td>
                <td style="padding: 10px; border-bottom: 1px solid #eee; font-style: italic; color: #666;">{p.get('justification') or 'N/A'}</td>
            </tr>
        """
        for p in override_products
    )

    body = f"""
        <p style="font-size: 16px;">An opportunity has been created that requires your approval due to price overrides.</p>

        <div style="background-color: #f8fafc; padding: 20px; border-radius: 8px; border: 1px solid #e2e8f0; margin-bottom: 25px;">
            <h4 style="margin-top: 0; color: {BRAND_COLOR_PRIMARY};">Proposal Details</h4>
            <table style="width: 100%; border-collapse: collapse;">
                <tr><td style="padding: 5px 0; width: 140px;"><strong>Employer:</strong></td><td>{employer_name}</td></tr>
                <tr><td style="padding: 5px 0;"><strong>Broker:</strong></td><td>{broker_name or 'N/A'}</td></tr>
                <tr><td style="padding: 5px 0;"><strong>Sales Person:</strong></td><td>{sales_person or 'N/A'}</td></tr>
                <tr><td style="padding: 5px 0;"><strong>Total Employees:</strong></td><td>{total_employees or 'N/A'}</td></tr>
                <tr><td style="padding: 5px 0;"><strong>Effective Date:</strong></td><td>{effective_date or 'N/A'}</td></tr>
                <tr><td style="padding: 5px 0;"><strong>Yearly Value:</strong></td><td>${yearly_value}</td></tr>
            </table>
        </div>

        <h4 style="color: {BRAND_COLOR_PRIMARY}; margin-bottom: 10px;">Product Overrides</h4>
        <table style="width: 100%; border-collapse: collapse; margin-bottom: 30px; font-size: 14px; border: 1px solid #eee;">
            <thead style="background-color: #f1f5f9;">
                <tr>
                    <th style="padding: 12px 10px; text-align: left;">Product</th>
                    <th style="padding: 12px 10px; text-align: left;">Employees</th>
                    <th style="padding: 12px 10px; text-align: left;">Rate</th>
                    <th style="padding: 12px 10px; text-align: left;">Justification</th>
                </tr>
            </thead>
            <tbody>{rows}</tbody>
        </table>

        <div style="text-align: center; margin-top: 40px; padding-top: 20px; border-top: 1px solid #eee;">
            <a href="{escape(approve_link)}"
               style="background-color: {BRAND_COLOR_ACCENT}; color: white; padding: 14px 30px; text-decoration: none; border-radius: 6px; font-weight: bold; margin: 0 10px 10px 10px; display: inline-block;">
                APPROVE
            </a>
            <a href="{escape(reject_link)}"
               style="background-color: {BRAND_COLOR_DANGER}; color: white; padding: 14px 30px; text-decoration: none; border-radius: 6px; font-weight: bold; margin: 0 10px 10px 10px; display: inline-block;">
                REJECT
            </a>
        </div>

        <p style="text-align: center; margin-top: 25px;">
            <a href="{_pipeline_link(location_id)}" style="color: {BRAND_COLOR_PRIMARY}; font-size: 13px;">View Opportunity in GHL Pipeline</a>
        </p>
    """

    text = f"""Action Required: price override approval for {employer_name}.

Approve: {approve_link}
Reject: {reject_link}
"""
    return {"subject": subject, "html": _wrap("APPROVAL REQUIRED", body), "text": text}


# ============================================================================
# PRICING PROPOSAL (sent to the broker, owner CC'd)
# ============================================================================

def build_proposal_email(business_name: str, pdf_url: str, effective_date: Optional[str] = None) -> Dict[str, str]:
    """
    Build 'Pricing Proposal' email.

    Returns dict with 'subject', 'html', 'text' keys.
    """
    subject = f"Pricing Proposal: {business_name}"
    body = f"""
        <p style="font-size: 16px;">Hello,</p>
        <p style="font-size: 16px;">Please find the pricing proposal for <strong>{business_name}</strong> via the link below:</p>

        <div style="text-align: center; margin: 30px 0;">
            <a href="{escape(pdf_url)}"
               style="background-color: {BRAND_COLOR_ACCENT}; color: white; padding: 14px 30px; text-decoration: none; border-radius: 6px; font-weight: bold; display: inline-block;">
                VIEW PROPOSAL PDF
            </a>
        </div>

        <p style="font-size: 14px; color: #666;">If you have any questions regarding this proposal, please reach out to your {COMPANY_NAME} representative.</p>

        <div style="margin-top: 30px; border-top: 1px solid #eee; padding-top: 20px;">
            <p style="font-size: 14px;"><strong>Proposal Details:</strong><br>
            Effective Date: {effective_date or 'N/A'}<br>
            Group: {business_name}</p>
        </div>
    """
    text = f"Please find the pricing proposal for {business_name} here: {pdf_url}"
    return {"subject": subject, "html": _wrap("PRICING PROPOSAL", body, footer_kind="delivery"), "text": text}


# ============================================================================
# OVERRIDE REJECTED (sent to the reviewer, owner CC'd)
# ============================================================================

def build_rejection_email(employer_name: str, opportunity_id: str, location_id: str) -> Dict[str, str]:
    subject = f"Price Override Rejected: {employer_name}"
    body = f"""
        <p style="font-size: 16px;">The price override for <strong>{employer_name}</strong> was rejected.</p>
        <p style="font-size: 14px; color: #666;">No proposal has been sent to the broker. Review the pricing with the opportunity owner and resubmit if needed.</p>
        <p style="font-size: 13px; color: #94a3b8;">Opportunity ID: {escape(opportunity_id)}</p>
        <p style="text-align: center; margin-top: 25px;">
            <a href="{_pipeline_link(location_id)}" style="color: {BRAND_COLOR_PRIMARY}; font-size: 13px;">View Opportunity in GHL Pipeline</a>
        </p>
    """
    text = f"The price override for {employer_name} was rejected. Opportunity ID: {opportunity_id}"
    return {"subject": subject, "html": _wrap("OVERRIDE REJECTED", body, footer_kind="notice"), "text": text}


# ============================================================================
# CONFIRMATION PAGES (rendered in the reviewer's browser)
# ============================================================================

def _confirmation_page(icon: str, icon_color: str, title: str, title_color: str, message: str) -> str:
    return f"""
    <html>
        <body style="font-family: sans-serif; text-align: center; padding: 50px; background-color: #f8fafc;">
            <div style="background: white; max-width: 500px; margin: 0 auto; padding: 40px; border-radius: 12px; box-shadow: 0 4px 6px rgba(0,0,0,0.05);">
                <div style="color: {icon_color}; font-size: 64px; margin-bottom: 20px;">{icon}</div>
                <h2 style="color: {title_color}; margin-bottom: 15px;">{title}</h2>
                <p style="color: #64748b; line-height: 1.6;">{message}</p>
                <div style="margin-top: 30px; border-top: 1px solid #eee; padding-top: 20px;">
                    <p style="font-size: 13px; color: #94a3b8;">You can now close this window.</p>
                </div>
            </div>
        </body>
    </html>
    """


def build_approved_page() -> str:
    return _confirmation_page(
        "&#10003;", BRAND_COLOR_ACCENT, "Opportunity Approved", BRAND_COLOR_PRIMARY,
        "The price override for this opportunity has been approved. A note has been added to the opportunity in GHL.",
    )


def build_rejected_page() -> str:
    return _confirmation_page(
        "&#10005;", BRAND_COLOR_DANGER, "Opportunity Rejected", "#630000",
        "The price override for this opportunity has been rejected. A note has been added to the opportunity in GHL.",
    )


def build_already_decided_page(current_status: str) -> str:
    return _confirmation_page(
        "&#8505;", BRAND_COLOR_PRIMARY, "Already Decided", BRAND_COLOR_PRIMARY,
        f"This opportunity has already been {escape(current_status)}. No further action was taken.",
    )
