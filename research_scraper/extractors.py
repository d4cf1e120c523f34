"""
HTML and JSON content extraction for scraped pages.

Every link, image and endpoint URL leaves this module already passed
through normalize_url, so downstream aggregation compares like with like.
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Iterable, List
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .models import ExtractedData
from .normalization import normalize_url, unique_normalized

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
PHONE_RE = re.compile(r"(?:\+\d{1,3}[\s.-]?)?(?:\(\d{2,4}\)[\s.-]?)?\d{3,4}[\s.-]\d{3,4}(?:[\s.-]\d{2,4})?")
ADDRESS_RE = re.compile(
    r"\d{1,5}\s+[A-Z][A-Za-z0-9.\s]{2,40}\s(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Lane|Ln|Drive|Dr|Way|Court|Ct)\b\.?",
)
API_PATH_RE = re.compile(r"""["'](/(?:api|graphql|v\d+)/[A-Za-z0-9_\-/.]*)["']""")

SOCIAL_HOSTS = {
    "twitter.com": "twitter",
    "x.com": "twitter",
    "linkedin.com": "linkedin",
    "facebook.com": "facebook",
    "instagram.com": "instagram",
    "youtube.com": "youtube",
    "github.com": "github",
    "tiktok.com": "tiktok",
}

# (technology, where to look, pattern)
TECH_SIGNATURES = [
    ("WordPress", "html", re.compile(r"wp-content|wp-includes", re.I)),
    ("Shopify", "html", re.compile(r"cdn\.shopify\.com", re.I)),
    ("Drupal", "generator", re.compile(r"drupal", re.I)),
    ("Joomla", "generator", re.compile(r"joomla", re.I)),
    ("Wix", "generator", re.compile(r"wix", re.I)),
    ("Squarespace", "html", re.compile(r"squarespace", re.I)),
    ("Next.js", "html", re.compile(r"__NEXT_DATA__|/_next/", re.I)),
    ("Nuxt", "html", re.compile(r"__NUXT__|/_nuxt/", re.I)),
    ("React", "script", re.compile(r"react(?:-dom)?[.-]", re.I)),
    ("Vue.js", "script", re.compile(r"vue(?:\.min)?\.js", re.I)),
    ("Angular", "html", re.compile(r"ng-version=", re.I)),
    ("jQuery", "script", re.compile(r"jquery", re.I)),
    ("Bootstrap", "html", re.compile(r"bootstrap(?:\.min)?\.(?:css|js)", re.I)),
    ("Tailwind CSS", "html", re.compile(r"tailwind", re.I)),
    ("Google Analytics", "script", re.compile(r"googletagmanager\.com|google-analytics\.com", re.I)),
    ("HubSpot", "script", re.compile(r"hs-scripts\.com|hubspot", re.I)),
    ("Stripe", "script", re.compile(r"js\.stripe\.com", re.I)),
    ("Cloudflare", "script", re.compile(r"cloudflare", re.I)),
]

MAX_TEXT_CHARS = 20000


def _dedupe(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for value in values:
        cleaned = value.strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            ordered.append(cleaned)
    return ordered


def _absolute(href: str, page_url: str) -> str:
    if href.startswith(("#", "javascript:", "mailto:", "tel:", "data:")):
        return ""
    return normalize_url(urljoin(page_url, href))


def _social_network(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return SOCIAL_HOSTS.get(host, "")


def extract_contact_info(text: str) -> Dict[str, List[str]]:
    """Pull emails, phone numbers and street addresses out of free text."""
    contact: Dict[str, List[str]] = {}
    emails = _dedupe(match.lower() for match in EMAIL_RE.findall(text))
    phones = _dedupe(
        match for match in PHONE_RE.findall(text) if len(re.sub(r"\D", "", match)) >= 7
    )
    addresses = _dedupe(ADDRESS_RE.findall(text))
    if emails:
        contact["emails"] = emails
    if phones:
        contact["phones"] = phones
    if addresses:
        contact["addresses"] = addresses
    return contact


def _structured_data(soup: BeautifulSoup) -> Dict[str, Any]:
    structured: Dict[str, Any] = {}
    json_ld: List[Any] = []
    for script in soup.find_all("script", type="application/ld+json"):
        raw = script.string or script.get_text() or ""
        try:
            json_ld.append(json.loads(raw))
        except ValueError:
            continue
    if json_ld:
        structured["json_ld"] = json_ld

    microdata = _dedupe(tag.get("itemtype", "") for tag in soup.find_all(attrs={"itemtype": True}))
    if microdata:
        structured["microdata_types"] = microdata

    open_graph = {
        tag["property"][3:]: tag.get("content", "")
        for tag in soup.find_all("meta", attrs={"property": re.compile(r"^og:")})
        if tag.get("content")
    }
    if open_graph:
        structured["open_graph"] = open_graph
    return structured


def _technologies(soup: BeautifulSoup, html: str, headers: Dict[str, str]) -> List[str]:
    generator_tag = soup.find("meta", attrs={"name": "generator"})
    generator = generator_tag.get("content", "") if generator_tag else ""
    scripts = " ".join(tag.get("src", "") for tag in soup.find_all("script", src=True))
    haystacks = {"html": html, "generator": generator, "script": scripts}

    found = [name for name, where, pattern in TECH_SIGNATURES if pattern.search(haystacks[where])]
    powered_by = {k.lower(): v for k, v in headers.items()}.get("x-powered-by")
    if powered_by:
        found.append(powered_by.split("/")[0].strip())
    return _dedupe(found)


def extract_html(html: str, page_url: str, headers: Dict[str, str] | None = None) -> ExtractedData:
    """
    Extract structured page content from an HTML document.

    Args:
        html: Raw HTML
        page_url: Final URL of the page, used to resolve relative links
        headers: Response headers (used for technology detection)

    Returns:
        ExtractedData for the page
    """
    soup = BeautifulSoup(html, "html.parser")

    title = soup.title.get_text(strip=True) if soup.title else ""
    if not title:
        heading = soup.find("h1")
        title = heading.get_text(strip=True) if heading else ""

    description = ""
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        tag = soup.find("meta", attrs=attrs)
        if tag and tag.get("content"):
            description = tag["content"].strip()
            break

    structured = _structured_data(soup)
    technologies = _technologies(soup, html, headers or {})
    api_endpoints = unique_normalized(urljoin(page_url, path) for path in API_PATH_RE.findall(html))
    forms = len(soup.find_all("form"))

    links: List[str] = []
    social: Dict[str, str] = {}
    mailto: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href.lower().startswith("mailto:"):
            mailto.append(href[7:].split("?")[0].lower())
            continue
        absolute = _absolute(href, page_url)
        if not absolute:
            continue
        network = _social_network(absolute)
        if network:
            social.setdefault(network, absolute)
        elif absolute not in links:
            links.append(absolute)

    images = unique_normalized(
        urljoin(page_url, img["src"]) for img in soup.find_all("img", src=True)
    )

    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    text = " ".join(soup.get_text(" ", strip=True).split())

    contact = extract_contact_info(text)
    if mailto:
        contact["emails"] = _dedupe(contact.get("emails", []) + mailto)

    return ExtractedData(
        title=title,
        description=description,
        text_content=text[:MAX_TEXT_CHARS],
        links=links,
        structured_data=structured,
        contact_info=contact,
        social_links=social,
        technologies=technologies,
        api_endpoints=api_endpoints,
        images=images,
        forms=forms,
        metadata={"content_length": len(html)},
    )


def _walk_strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _walk_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _walk_strings(item)


def extract_json(payload: Any, page_url: str) -> ExtractedData:
    """Extract links and contact details from a decoded JSON document."""
    strings = list(_walk_strings(payload))
    urls = unique_normalized(s for s in strings if s.startswith(("http://", "https://")))

    links: List[str] = []
    social: Dict[str, str] = {}
    for url in urls:
        network = _social_network(url)
        if network:
            social.setdefault(network, url)
        else:
            links.append(url)

    title = ""
    description = ""
    if isinstance(payload, dict):
        title = str(payload.get("title") or payload.get("name") or "")
        description = str(payload.get("description") or payload.get("summary") or "")

    api_endpoints = [url for url in links if "/api/" in url or url.endswith(".json")]
    structured = payload if isinstance(payload, dict) else {"items": payload}

    return ExtractedData(
        title=title,
        description=description,
        text_content="",
        links=links,
        structured_data={"json": structured},
        contact_info=extract_contact_info(" ".join(strings)),
        social_links=social,
        api_endpoints=api_endpoints,
        metadata={"source": normalize_url(page_url), "content_type": "application/json"},
    )
