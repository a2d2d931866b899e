from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi import HTTPException

from config import settings
from services import seo
from services.providers.types import GenerationResult, ProviderError


SAMPLE_HTML = """
<html>
<head>
<title>Acme Dental | Family dentist in Springfield, open six days a week</title>
<meta name="description" content="Acme Dental offers cleanings, whitening and emergency care.">
<meta name="viewport" content="width=device-width, initial-scale=1">
<link rel="canonical" href="https://acme-dental.example/">
</head>
<body>
<h1>Acme Dental</h1>
<h2>Services</h2><h3>Cleanings</h3>
<img src="a.png"><img src="b.png">
<a href="/book">Book</a>
</body>
</html>
"""


def test_extract_and_score_page():
    page = seo.extract_page_data(SAMPLE_HTML)
    assert page["title"].startswith("Acme Dental")
    assert page["h1"] == "Acme Dental"
    assert page["h2_count"] == 1
    assert page["h3_count"] == 1
    assert page["image_count"] == 2
    assert page["canonical"] == "https://acme-dental.example/"
    assert page["viewport"]

    scores = seo.score_page(page)
    assert set(scores) == {
        "overall", "on_page", "off_page", "semantic", "mobile", "performance", "desktop_score", "mobile_score",
    }
    assert all(0 <= value <= 100 for value in scores.values())
    assert scores["mobile"] == 95

    bare = seo.score_page(seo.extract_page_data("<html></html>"))
    assert bare["overall"] < scores["overall"]
    assert "Add a descriptive title tag" in seo.default_recommendations(seo.extract_page_data(""))


def test_normalize_url():
    assert seo.normalize_url("acme-dental.example") == "https://acme-dental.example"
    assert seo.normalize_url("http://acme.example/about") == "http://acme.example/about"
    with pytest.raises(HTTPException):
        seo.normalize_url("")
    with pytest.raises(HTTPException):
        seo.normalize_url("localhost")


@pytest.mark.asyncio
async def test_analyze_stores_report_and_charges(api_client, auth_header):
    headers = auth_header("seo-user")
    recommendations = GenerationResult(content='["Add alt text to images", "Publish more service pages"]', model="m")

    with patch("services.seo.fetch_page", new=AsyncMock(return_value=SAMPLE_HTML)) as fetch, \
         patch("services.seo.generate_text", new=AsyncMock(return_value=recommendations)):
        resp = await api_client.post(
            "/seo/analyze",
            json={"website_url": "acme-dental.example", "email": "owner@acme.example"},
            headers=headers,
        )

    assert resp.status_code == 200
    fetch.assert_awaited_once_with("https://acme-dental.example")
    body = resp.json()
    assert body["credits_used"] == settings.DEFAULT_CREDIT_COSTS["seo_analysis"]
    report = body["report"]
    assert report["website_url"] == "https://acme-dental.example"
    assert report["analysis"]["ai_assisted"] is True
    assert report["analysis"]["recommendations"][0] == "Add alt text to images"
    assert report["overall_score"] == report["scores"]["overall"]

    listing = await api_client.get("/seo/reports", headers=headers)
    assert listing.json()["total"] == 1
    assert "analysis" not in listing.json()["items"][0]

    detail = await api_client.get(f"/seo/reports/{report['report_id']}", headers=headers)
    assert detail.status_code == 200
    assert detail.json()["email"] == "owner@acme.example"


@pytest.mark.asyncio
async def test_ai_outage_falls_back_to_heuristic_recommendations(api_client, auth_header):
    outage = AsyncMock(side_effect=ProviderError("generation", "AI service unavailable", status_code=503))

    with patch("services.seo.fetch_page", new=AsyncMock(return_value=SAMPLE_HTML)), \
         patch("services.seo.generate_text", new=outage):
        resp = await api_client.post(
            "/seo/analyze", json={"website_url": "acme-dental.example"}, headers=auth_header("seo-fallback")
        )

    assert resp.status_code == 200
    analysis = resp.json()["report"]["analysis"]
    assert analysis["ai_assisted"] is False
    assert "H1 tag is present" in analysis["recommendations"]


@pytest.mark.asyncio
async def test_unreachable_site_is_refunded(api_client, auth_header):
    headers = auth_header("seo-unreachable")
    unreachable = AsyncMock(side_effect=ProviderError("website", "Failed to fetch website content."))

    with patch("services.seo.fetch_page", new=unreachable):
        resp = await api_client.post("/seo/analyze", json={"website_url": "down.example"}, headers=headers)

    assert resp.status_code == 502
    assert resp.json()["detail"]["provider"] == "website"

    credits = await api_client.get("/credits", headers=headers)
    assert credits.json()["credits_balance"] == settings.TRIAL_CREDITS
    missing = await api_client.get("/seo/reports/not-a-report", headers=headers)
    assert missing.status_code == 404


def test_extract_handles_attribute_order_and_nested_markup():
    html = """
    <html><head>
    <TITLE> Acme Dental </TITLE>
    <meta content="Family dentistry in Springfield." name="Description">
    <meta content="width=device-width" name="viewport">
    <meta content="https://acme.example/og.png" property="og:image">
    <link href="https://acme.example/" rel="canonical">
    </head>
    <body><h1 class="hero"><span>Acme</span> <em>Dental</em></h1><a href="/a">a</a><a>no href</a></body>
    </html>
    """
    page = seo.extract_page_data(html)
    assert page["title"] == "Acme Dental"
    assert page["description"] == "Family dentistry in Springfield."
    assert page["viewport"] == "width=device-width"
    assert page["has_og_image"] is True
    assert page["canonical"] == "https://acme.example/"
    assert page["h1"] == "Acme Dental"
    assert page["link_count"] == 1


@pytest.mark.asyncio
async def test_fetch_page_stops_at_byte_limit():
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"a" * 50000, headers={"Content-Type": "text/html"})
    )
    text = await seo.fetch_page("https://acme.example", max_bytes=1000, transport=transport)
    assert len(text) == 1000


@pytest.mark.asyncio
async def test_fetch_page_error_status_is_a_provider_error():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(ProviderError) as exc_info:
        await seo.fetch_page("https://acme.example", transport=transport)
    assert exc_info.value.provider == seo.WEBSITE_PROVIDER
