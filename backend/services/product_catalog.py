"""Static product and pricing-tier configuration served to the intake form.

Pricing arithmetic happens client-side; the backend only publishes the catalogue.
"""
from typing import Any, Dict, List

PRODUCTS: List[Dict[str, Any]] = [
    {"product": "HSA", "label": "HSA Plans", "unit": "Per Participant Per Month"},
    {"product": "FSA", "label": "Section 125, FSA Plans", "unit": "Per Participant Per Month"},
    {"product": "HRA", "label": "Section 105, HRA Plans", "unit": "Per Participant Per Month"},
    {"product": "LSA", "label": "LSA Plans", "unit": "Per Participant Per Month"},
    {"product": "COBRA", "label": "COBRAcare+ Administration", "unit": "Per Benefits Enrolled Employee Per Month"},
    {"product": "Direct Billing", "label": "Direct Billing", "unit": "Per Participant Per Month"},
    {"product": "POP", "label": "Premium Only Plan", "unit": "Annual"},
]

TIERS: List[Dict[str, Any]] = [
    {"label": "PEPM (Book)", "multiplier": 1},
    {"label": "Preferred Broker", "multiplier": 0.85},
    {"label": "Standard Markup", "multiplier": 1.2},
    {"label": "Premium Markup", "multiplier": 1.5},
]


def get_public_config() -> Dict[str, Any]:
    return {"products": PRODUCTS, "tiers": TIERS}
