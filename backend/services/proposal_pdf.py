"""Proposal PDF renderer - plan options table for a single employer.

Uses reportlab platypus: one section table per product family, rates from the
submitted products (override rates marked with *), effective date shown only for
selected products, optional custom message at the end.
"""
from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable
)
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
import html
import io
import logging
import re

logger = logging.getLogger(__name__)

PRIMARY_COLOR = "#003366"
SECONDARY_COLOR = "#80B040"
ACCENT_COLOR = "#E6E6E6"
TEXT_COLOR = "#333333"

FOOTER_TEXT = "855.890.7239 • 4601 College Blvd. Suite 280, Leawood, KS 66211 • www.NueSynergy.com"


def hex_to_rgb(hex_color: str) -> tuple:
    """Convert hex color to RGB tuple for reportlab."""
    hex_color = hex_color.lstrip('#')
    return tuple(int(hex_color[i:i+2], 16) / 255 for i in (0, 2, 4))


@dataclass
class ProposalData:
    employer_name: str = ""
    effective_date: str = ""
    products: List[Dict[str, Any]] = field(default_factory=list)
    proposal_message: str = ""
    broker_name: Optional[str] = None
    broker_agency: Optional[str] = None

    @classmethod
    def from_submission(cls, data: Dict[str, Any], effective_date: Optional[str] = None) -> "ProposalData":
        contact = data.get("contact") or {}
        return cls(
            employer_name=data.get("businessName") or data.get("employerName") or "",
            effective_date=effective_date or data.get("effectiveDate") or "",
            products=list(data.get("products") or []),
            proposal_message=data.get("proposalMessage") or "",
            broker_name=contact.get("name"),
            broker_agency=data.get("brokerAgency"),
        )


def format_effective_date(value: str) -> str:
    """YYYY-MM-DD -> MM-DD-YYYY; anything else passes through, empty -> '-'."""
    if not value:
        return "-"
    if re.match(r"^\d{4}-\d{2}-\d{2}$", value):
        year, month, day = value.split("-")
        return f"{month}-{day}-{year}"
    return value


class ProposalRenderer:
    """Build the proposal document for a ProposalData."""

    def __init__(self, data: ProposalData):
        self.data = data
        self.effective_date = format_effective_date(data.effective_date)
        self.selection = {
            "hsa": self._has_product("HSA"),
            "fsa": self._has_product("FSA"),
            "hra": self._has_product("HRA"),
            "lsa": self._has_product("LSA"),
            "cobra": self._has_product("COBRA"),
            "direct": self._has_product("Direct Billing"),
            "pop": self._has_product("POP"),
        }

    def _has_product(self, name: str) -> bool:
        return any((p.get("product") or "") == name for p in self.data.products)

    def _find_product(self, search: str) -> Optional[Dict[str, Any]]:
        search = search.lower()
        for product in self.data.products:
            if search in (product.get("product") or "").lower():
                return product
        return None

    def find_rate(self, search: str) -> str:
        product = self._find_product(search)
        if not product:
            return "-"
        rate = product.get("rate")
        try:
            rate_str = f"${float(rate):.2f}"
        except (TypeError, ValueError):
            rate_str = str(rate or "-")
        return f"{rate_str}*" if product.get("isOverride") else rate_str

    def find_min_fee(self, search: str) -> str:
        product = self._find_product(search)
        if not product:
            return "-"
        if product.get("waiveMin") or product.get("waivedMin"):
            return "Waived"
        try:
            return f"${float(product['minFee']):.2f}" if product.get("minFee") else "-"
        except (TypeError, ValueError):
            return "-"

    def date_for(self, key: str) -> str:
        return self.effective_date if self.selection.get(key) else "-"

    def create_styles(self) -> Dict[str, ParagraphStyle]:
        base_styles = getSampleStyleSheet()
        primary = colors.Color(*hex_to_rgb(PRIMARY_COLOR))
        text = colors.Color(*hex_to_rgb(TEXT_COLOR))
        return {
            "title": ParagraphStyle(
                'ProposalTitle',
                parent=base_styles['Title'],
                textColor=primary,
                fontSize=18,
                spaceAfter=6,
                alignment=TA_LEFT,
            ),
            "group": ParagraphStyle(
                'ProposalGroup',
                parent=base_styles['Normal'],
                textColor=text,
                fontName='Helvetica-Bold',
                fontSize=10,
                backColor=colors.Color(*hex_to_rgb(ACCENT_COLOR)),
                borderPadding=6,
                spaceAfter=12,
            ),
            "heading": ParagraphStyle(
                'ProposalHeading',
                parent=base_styles['Heading3'],
                textColor=text,
                fontSize=10,
                spaceBefore=12,
                spaceAfter=4,
            ),
            "body": ParagraphStyle(
                'ProposalBody',
                parent=base_styles['Normal'],
                textColor=text,
                fontSize=9,
            ),
            "footer": ParagraphStyle(
                'ProposalFooter',
                parent=base_styles['Normal'],
                textColor=colors.gray,
                fontSize=8,
                alignment=TA_CENTER,
            ),
        }

    def section_table(self, title: str, rows: List[tuple]) -> Table:
        """rows: (label, price, effective_date, is_sub)."""
        data = [[title, "Price", "Effective Date"]]
        for label, price, date, _ in rows:
            data.append([label, price, date])

        table = Table(data, colWidths=[320, 80, 92])
        style = [
            ('BACKGROUND', (0, 0), (-1, 0), colors.Color(*hex_to_rgb(PRIMARY_COLOR))),
            ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
            ('FONTNAME', (0, 0), (0, 0), 'Helvetica-Bold'),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.Color(0.78, 0.78, 0.78)),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
            ('TOPPADDING', (0, 0), (-1, -1), 5),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
        ]
        for index, (_, _, _, is_sub) in enumerate(rows, start=1):
            if is_sub:
                style.append(('LEFTPADDING', (0, index), (0, index), 16))
            else:
                style.append(('FONTNAME', (0, index), (0, index), 'Helvetica-Bold'))
        table.setStyle(TableStyle(style))
        return table

    def sections(self) -> List[tuple]:
        d = self.date_for
        any_spending = any(self.selection[k] for k in ("hsa", "fsa", "hra", "lsa"))
        misc_date = self.effective_date if any_spending else "-"
        file_date = self.effective_date if any(self.selection.values()) else "-"
        return [
            ("HSA Plans", [
                ("Per Participant Per Month", self.find_rate("HSA"), d("hsa"), False),
                ("Spouse Saver Incentive Account", "-", d("hsa"), True),
                ("Annual Renewal (AFTER YEAR 1)", "-", d("hsa"), True),
                ("Monthly Minimum", self.find_min_fee("HSA"), d("hsa"), True),
            ]),
            ("Section 125, FSA Plans", [
                ("FSA Plan Documents, Implementation, Design & Installation", self.find_rate("FSA"), d("fsa"), False),
                ("Annual Compliance & Renewal (AFTER YEAR 1)", "-", d("fsa"), True),
                ("Per Participant Per Month", self.find_rate("FSA"), d("fsa"), True),
                ("Monthly Minimum", self.find_min_fee("FSA"), d("fsa"), True),
            ]),
            ("Section 105, HRA Plans", [
                ("HRA Plan Documents, Implementation, Design & Installation", self.find_rate("HRA"), d("hra"), False),
                ("Annual Compliance & Renewal (WAIVED 1st YEAR)", "-", d("hra"), True),
                ("Per Participant Per Month", self.find_rate("HRA"), d("hra"), True),
                ("Monthly Minimum", self.find_min_fee("HRA"), d("hra"), True),
            ]),
            ("Miscellaneous Services", [
                ("eClaims Manager Per Participant, Monthly", "-", misc_date, False),
                ("NueSynergy Smart Mobile App", "Included", misc_date, False),
                ("Smart Debit Card Setup & Administration Per Participant, Monthly", "-", misc_date, False),
            ]),
            ("LSA Plans", [
                ("LSA Implementation, Design & Installation", self.find_rate("LSA"), d("lsa"), False),
                ("Per Participant Per Month", self.find_rate("LSA"), d("lsa"), True),
            ]),
            ("COBRAcare+ Administration", [
                ("Per Benefits Enrolled Employee Per Month", self.find_rate("COBRA"), d("cobra"), False),
                ("Current COBRA Continuation", "-", d("cobra"), True),
                ("Qualifying Event Notice", "-", d("cobra"), True),
            ]),
            ("Direct Billing", [
                ("Implementation & Setup (YEAR 1)", self.find_rate("Direct"), d("direct"), False),
                ("Annual Renewal (AFTER YEAR 1)", "-", d("direct"), True),
                ("Per Direct Bill Participant Per Month", self.find_rate("Direct"), d("direct"), True),
                ("Direct Bill Minimum, Monthly", self.find_min_fee("Direct"), d("direct"), True),
            ]),
            ("Section 125, Premium Only Plan (POP)", [
                ("POP Document (ONE-TIME SETUP FEE)", self.find_rate("POP"), d("pop"), False),
                ("Annual Compliance & Renewal (WAIVED 1st YEAR)", "-", d("pop"), True),
            ]),
            ("File Implementation and Processing", [
                ("Enrollment/Eligibility File (New Enrollment and Terminations)", "-", file_date, False),
                ("Payroll/Contribution File", "-", file_date, False),
                ("COBRA Initial Notices", "-", d("cobra"), False),
            ]),
        ]

    def build(self, output) -> None:
        """Write the document to a path or binary file-like object."""
        styles = self.create_styles()
        doc = SimpleDocTemplate(
            output,
            pagesize=letter,
            rightMargin=50,
            leftMargin=50,
            topMargin=40,
            bottomMargin=50,
            title=f"Pricing Proposal - {html.unescape(self.data.employer_name)}",
        )

        elements = []
        elements.append(Paragraph("PROPOSAL: PLAN OPTIONS", styles["title"]))
        elements.append(HRFlowable(
            width="100%",
            thickness=3,
            color=colors.Color(*hex_to_rgb(SECONDARY_COLOR)),
            spaceAfter=12
        ))
        elements.append(Paragraph(f"GROUP: {self.data.employer_name}", styles["group"]))

        for title, rows in self.sections():
            elements.append(self.section_table(title, rows))
            elements.append(Spacer(1, 10))

        if any(p.get("isOverride") for p in self.data.products):
            elements.append(Paragraph("* Rate subject to pricing approval.", styles["body"]))

        message = (self.data.proposal_message or "").strip()
        if message:
            elements.append(Spacer(1, 12))
            elements.append(Paragraph("Custom Message", styles["heading"]))
            elements.append(Paragraph(message, styles["body"]))

        elements.append(Spacer(1, 24))
        elements.append(Paragraph(
            f"{FOOTER_TEXT}<br/>Generated {datetime.now(timezone.utc).strftime('%d %B %Y')}",
            styles["footer"]
        ))

        doc.build(elements)


def render_proposal_pdf(data: ProposalData, output_path: str) -> str:
    """Render to output_path and return it."""
    ProposalRenderer(data).build(output_path)
    logger.info(f"Proposal PDF rendered for {data.employer_name or 'unknown employer'}")
    return output_path


def render_proposal_pdf_bytes(data: ProposalData) -> bytes:
    buffer = io.BytesIO()
    ProposalRenderer(data).build(buffer)
    return buffer.getvalue()
