"""Tests for the approve/reject links placed in the pricing-override email."""
import os
import pytest
from unittest.mock import patch

from utils.public_app_url import build_approval_links, get_approval_base_url

UNSET = {
    "PUBLIC_APP_URL": "", "APP_BASE_URL": "", "VERCEL_URL": "", "RENDER_EXTERNAL_URL": "",
    "ENVIRONMENT": "", "ENV": "",
}


def env(**values):
    return patch.dict(os.environ, {**UNSET, **values}, clear=False)


def test_links_point_at_both_endpoints():
    with env(PUBLIC_APP_URL="https://intake.nuesynergy.com"):
        links = build_approval_links("opp-1")
    assert links == {
        "approve": "https://intake.nuesynergy.com/api/approve-opportunity?id=opp-1",
        "reject": "https://intake.nuesynergy.com/api/reject-opportunity?id=opp-1",
    }


def test_opportunity_id_cannot_break_the_query_string():
    with env(PUBLIC_APP_URL="https://intake.nuesynergy.com"):
        links = build_approval_links("a&b=c d")
    assert links["approve"].endswith("?id=a%26b%3Dc%20d")
    assert links["reject"].endswith("?id=a%26b%3Dc%20d")


def test_trailing_slash_is_dropped():
    with env(PUBLIC_APP_URL="https://intake.nuesynergy.com/"):
        assert build_approval_links("opp-1")["approve"].startswith("https://intake.nuesynergy.com/api/")


def test_plain_http_host_is_upgraded():
    with env(APP_BASE_URL="http://intake.nuesynergy.com"):
        assert get_approval_base_url() == "https://intake.nuesynergy.com"


@pytest.mark.parametrize("values, expected", [
    ({"PUBLIC_APP_URL": "https://a.example.com", "APP_BASE_URL": "https://b.example.com"}, "https://a.example.com"),
    ({"VERCEL_URL": "intake-git-main.vercel.app"}, "https://intake-git-main.vercel.app"),
    ({"RENDER_EXTERNAL_URL": "https://intake.onrender.com"}, "https://intake.onrender.com"),
])
def test_host_lookup_order(values, expected):
    with env(**values):
        assert get_approval_base_url() == expected


def test_local_development_uses_local_api():
    with env(ENVIRONMENT="development"):
        assert build_approval_links("opp-1")["approve"] == "http://localhost:8001/api/approve-opportunity?id=opp-1"


def test_missing_host_in_production_refuses_to_build_links():
    with env(ENVIRONMENT="production"):
        with pytest.raises(ValueError, match="PUBLIC_APP_URL"):
            build_approval_links("opp-1")


def test_localhost_in_production_refuses_to_build_links():
    with env(PUBLIC_APP_URL="http://localhost:8001", ENV="prod"):
        with pytest.raises(ValueError, match="localhost"):
            get_approval_base_url()
