"""SEO audits: fetch a page, score it and store the report."""

from __future__ import annotations

from datetime import datetime
import json
import logging
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
from fastapi import HTTPException
import httpx
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.seo_report import SeoReport
from services.actions import run_billable_action
from services.byok import CredentialVault
from services.credits import CreditLedger
from services.providers.generation import generate_text
from services.providers.types import ProviderAuthError, ProviderError

logger = logging.getLogger(__name__)

SEO_ACTION_TYPE = "seo_analysis"
WEBSITE_PROVIDER = "website"
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


def normalize_url(url: str) -> str:
    text = (url or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Website URL is required")
    if not re.match(r"^https?://", text, re.IGNORECASE):
        text = f"https://{text}"
    parsed = urlparse(text)
    if not parsed.netloc or "." not in parsed.netloc:
        raise HTTPException(status_code=400, detail="Website URL is invalid")
    return text


def _meta_content(soup: BeautifulSoup, attribute: str, value: str) -> str:
    tag = soup.find("meta", attrs={attribute: re.compile(f"^{re.escape(value)}$", re.IGNORECASE)})
    content = tag.get("content") if tag else None
    return content.strip() if isinstance(content, str) else ""


def _link_href(soup: BeautifulSoup, rel: str) -> str:
    for link in soup.find_all("link", href=True):
        rel_values = [value.lower() for value in (link.get("rel") or [])]
        if rel in rel_values:
            return str(link["href"]).strip()
    return ""


def extract_page_data(html: str) -> Dict[str, Any]:
    soup = BeautifulSoup(html or "", "html.parser")
    h1 = soup.find("h1")
    return {
        "title": soup.title.get_text(strip=True) if soup.title else "",
        "description": _meta_content(soup, "name", "description"),
        "h1": h1.get_text(" ", strip=True) if h1 else "",
        "h2_count": len(soup.find_all("h2")),
        "h3_count": len(soup.find_all("h3")),
        "image_count": len(soup.find_all("img")),
        "link_count": len(soup.find_all("a", href=True)),
        "canonical": _link_href(soup, "canonical"),
        "robots": _meta_content(soup, "name", "robots"),
        "has_og_image": bool(_meta_content(soup, "property", "og:image")),
        "viewport": _meta_content(soup, "name", "viewport"),
        "content_length": len(html or ""),
    }


def _band(length: int, bands: List[tuple], default: int) -> int:
    for low, high, score in bands:
        if low <= length <= high:
            return score
    return default if length > 0 else 0


def score_page(page: Dict[str, Any]) -> Dict[str, int]:
    """Heuristic 0-100 scores per area; callers treat the numbers as opaque."""
    title_score = _band(len(page["title"]), [(50, 60, 95), (40, 49, 85), (30, 39, 70), (61, 70, 75)], 50)
    desc_score = _band(len(page["description"]), [(150, 160, 95), (120, 149, 85), (100, 119, 70), (161, 200, 75)], 50)
    h1_score = 90 if page["h1"] else 20
    if page["h2_count"] and page["h3_count"]:
        heading_score = 90
    elif page["h2_count"]:
        heading_score = 75
    elif page["h3_count"]:
        heading_score = 60
    else:
        heading_score = 50
    on_page = round((title_score + desc_score + h1_score + heading_score) / 4)
    mobile = 95 if page["viewport"] else 25

    size = page["content_length"]
    if size < 50000:
        performance, desktop, mobile_perf = 90, 92, 88
    elif size < 100000:
        performance, desktop, mobile_perf = 80, 85, 75
    elif size < 200000:
        performance, desktop, mobile_perf = 70, 75, 65
    else:
        performance, desktop, mobile_perf = 60, 65, 55

    if size > 5000:
        content_score = 90
    elif size > 3000:
        content_score = 80
    elif size > 1000:
        content_score = 65
    else:
        content_score = 50
    semantic = round((content_score + heading_score + (90 if page["has_og_image"] else 50)) / 3)
    off_page = 65
    overall = round((on_page + mobile + performance + semantic + off_page) / 5)
    return {
        "overall": overall,
        "on_page": on_page,
        "off_page": off_page,
        "semantic": semantic,
        "mobile": mobile,
        "performance": performance,
        "desktop_score": desktop,
        "mobile_score": mobile_perf,
    }


def default_recommendations(page: Dict[str, Any]) -> List[str]:
    return [
        "Title tag is present" if page["title"] else "Add a descriptive title tag",
        "Meta description is present" if page["description"] else "Add a meta description",
        "H1 tag is present" if page["h1"] else "Add an H1 tag to the page",
        "Mobile viewport is configured" if page["viewport"] else "Add viewport meta tag for mobile optimization",
        "Canonical tag is set" if page["canonical"] else "Consider adding a canonical tag",
    ]


async def fetch_page(
    url: str,
    *,
    max_bytes: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """Download at most ``max_bytes`` of the page body."""
    limit = int(max_bytes or settings.SEO_MAX_PAGE_BYTES)
    chunks: List[bytes] = []
    received = 0
    encoding = "utf-8"
    try:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(float(settings.PROVIDER_TIMEOUT_SECONDS)),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
            transport=transport,
        ) as http:
            async with http.stream("GET", url) as response:
                response.raise_for_status()
                encoding = response.charset_encoding or encoding
                async for chunk in response.aiter_bytes():
                    chunk = chunk[: limit - received]
                    chunks.append(chunk)
                    received += len(chunk)
                    if received >= limit:
                        logger.info("Page %s truncated at %s bytes", url, limit)
                        break
    except httpx.HTTPError as exc:
        raise ProviderError(
            WEBSITE_PROVIDER,
            "Failed to fetch website content. Please check the URL and try again.",
        ) from exc
    try:
        return b"".join(chunks).decode(encoding, errors="replace")
    except LookupError:
        return b"".join(chunks).decode("utf-8", errors="replace")


async def _ai_recommendations(api_key: str, url: str, page: Dict[str, Any]) -> Optional[List[str]]:
    if not api_key:
        return None
    prompt = (
        f"Review the on-page SEO of {url}. Page facts: {json.dumps(page)}. "
        "Reply with a JSON array of at most 8 short, concrete recommendations."
    )
    try:
        result = await generate_text(
            api_key,
            [
                {"role": "system", "content": "You are an SEO consultant. Reply with JSON only."},
                {"role": "user", "content": prompt},
            ],
            temperature=0.3,
            max_tokens=800,
        )
    except ProviderAuthError:
        raise
    except ProviderError as exc:
        logger.warning("AI recommendations unavailable for %s: %s", url, exc)
        return None
    try:
        parsed = json.loads(result.content)
    except ValueError:
        return None
    if not isinstance(parsed, list):
        return None
    return [str(item) for item in parsed if str(item).strip()][:8]


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_report(report: SeoReport, *, include_analysis: bool = True) -> Dict[str, Any]:
    payload = {
        "report_id": report.id,
        "website_url": report.website_url,
        "overall_score": report.overall_score,
        "email": report.email,
        "generated_at": _iso(report.created_at),
    }
    if include_analysis:
        analysis = report.analysis_json or {}
        payload["analysis"] = analysis
        payload["scores"] = analysis.get("scores", {})
    return payload


async def analyze_website_service(
    *,
    user_id: str,
    website_url: str,
    email: Optional[str],
    ledger: CreditLedger,
    vault: CredentialVault,
    db: AsyncSession,
) -> Dict[str, Any]:
    url = normalize_url(website_url)

    async def _call(api_key: str) -> Dict[str, Any]:
        page = extract_page_data(await fetch_page(url))
        scores = score_page(page)
        recommendations = await _ai_recommendations(api_key, url, page)
        return {
            "page": page,
            "scores": scores,
            "recommendations": recommendations or default_recommendations(page),
            "ai_assisted": recommendations is not None,
        }

    async def _save(analysis: Dict[str, Any], charge) -> SeoReport:
        report = SeoReport(
            user_id=user_id,
            website_url=url,
            overall_score=analysis["scores"]["overall"],
            analysis_json=analysis,
            email=email,
        )
        db.add(report)
        await db.commit()
        await db.refresh(report)
        return report

    outcome = await run_billable_action(
        ledger=ledger,
        vault=vault,
        user_id=user_id,
        action_type=SEO_ACTION_TYPE,
        provider="generation",
        call=_call,
        deliver=_save,
        reference_id=url,
    )
    report = outcome.value
    logger.info("seo_report_created user=%s url=%s score=%s", user_id, url, report.overall_score)
    return {"report": serialize_report(report), **outcome.credits_payload()}


async def list_reports_service(*, user_id: str, db: AsyncSession, limit: int = 10, offset: int = 0) -> Dict[str, Any]:
    limit = min(max(int(limit), 1), 100)
    offset = max(int(offset), 0)
    total_result = await db.execute(select(func.count(SeoReport.id)).where(SeoReport.user_id == user_id))
    result = await db.execute(
        select(SeoReport)
        .where(SeoReport.user_id == user_id)
        .order_by(SeoReport.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    items = [serialize_report(report, include_analysis=False) for report in result.scalars().all()]
    return {"items": items, "count": len(items), "total": int(total_result.scalar() or 0)}


async def get_report_service(*, user_id: str, report_id: str, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(SeoReport).where(SeoReport.id == report_id, SeoReport.user_id == user_id))
    report = result.scalar_one_or_none()
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return serialize_report(report)
