"""
Merges scraping runs into one deduplicated per-session dataset.

Pages are keyed by normalize_url(), so the same page reached through
different runs, phases or URL spellings is stored once. Merging the same
batch twice leaves the dataset unchanged, and statistics are recomputed
from scratch after every merge.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .logging_utils import log_event
from .models import PageResult, ScraperResult
from .normalization import normalize_url

logger = logging.getLogger(__name__)

EXTRACTED_KEYS = (
    "titles",
    "descriptions",
    "technologies",
    "emails",
    "phones",
    "addresses",
    "social_links",
    "structured_entities",
    "people",
    "products",
    "services",
    "pricing",
)

# Page document list fields counted as data points.
COUNTED_LIST_FIELDS = ("technologies", "links", "discovered_links", "api_endpoints", "images")
COUNTED_DICT_FIELDS = ("contact_info", "social_links", "structured_data")


def _empty_stats() -> Dict[str, Any]:
    return {
        "total_pages": 0,
        "total_links": 0,
        "unique_technologies": 0,
        "phase_counts": {},
        "data_points": 0,
    }


def _empty_extracted() -> Dict[str, List[Any]]:
    return {key: [] for key in EXTRACTED_KEYS}


def _identity(item: Any) -> str:
    if isinstance(item, (dict, list)):
        return json.dumps(item, sort_keys=True, default=str)
    return f"{type(item).__name__}:{item}"


def merge_lists(first: Optional[Iterable[Any]], second: Optional[Iterable[Any]]) -> List[Any]:
    """Union of two lists in first-seen order; objects compare structurally."""
    seen = set()
    merged: List[Any] = []
    for item in list(first or []) + list(second or []):
        key = _identity(item)
        if key not in seen:
            seen.add(key)
            merged.append(item)
    return merged


def _merge_value(old: Any, new: Any) -> Any:
    if new is None:
        return old
    if isinstance(old, list) and isinstance(new, list):
        return merge_lists(old, new)
    if isinstance(old, dict) and isinstance(new, dict):
        merged = dict(old)
        for key, value in new.items():
            merged[key] = _merge_value(old.get(key), value)
        return merged
    return new


def _iso_timestamp(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return str(value)


@dataclass
class AggregatedData:
    pages: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    stats: Dict[str, Any] = field(default_factory=_empty_stats)
    extracted_data: Dict[str, List[Any]] = field(default_factory=_empty_extracted)
    links: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages": copy.deepcopy(self.pages),
            "stats": copy.deepcopy(self.stats),
            "extracted_data": copy.deepcopy(self.extracted_data),
            "links": list(self.links),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AggregatedData":
        if not data:
            return cls()
        extracted = _empty_extracted()
        extracted.update(copy.deepcopy(data.get("extracted_data") or data.get("extractedData") or {}))
        stats = _empty_stats()
        stats.update(copy.deepcopy(data.get("stats") or {}))
        return cls(
            pages=copy.deepcopy(data.get("pages") or {}),
            stats=stats,
            extracted_data=extracted,
            links=list(data.get("links") or []),
        )


@dataclass(frozen=True)
class MergeReport:
    added: int = 0
    updated: int = 0
    skipped: int = 0


def page_document(page: PageResult) -> Dict[str, Any]:
    """Flatten a PageResult into the page document stored in AggregatedData."""
    doc: Dict[str, Any] = {
        "url": page.url,
        "status_code": page.status_code,
        "scraper_id": page.scraper_id,
        "timestamp": _iso_timestamp(page.timestamp),
    }
    if page.data is not None:
        data = page.data
        doc.update(
            {
                "title": data.title,
                "description": data.description,
                "text_content": data.text_content,
                "links": list(data.links),
                "structured_data": copy.deepcopy(data.structured_data),
                "contact_info": copy.deepcopy(data.contact_info),
                "social_links": dict(data.social_links),
                "technologies": list(data.technologies),
                "api_endpoints": list(data.api_endpoints),
                "images": list(data.images),
                "forms": data.forms,
            }
        )
    return doc


class DataAggregator:
    """
    URL-keyed merge of scraping results into AggregatedData.

    Incoming data may be a ScraperResult (only successful pages are
    merged), a list of page documents, or a document with any of
    `pages`, `links` and `extracted_data` / `extractedData`.
    """

    def merge(self, existing: Optional[AggregatedData], incoming: Any, phase: str) -> AggregatedData:
        merged, _ = self.merge_with_report(existing, incoming, phase)
        return merged

    def merge_with_report(
        self,
        existing: Optional[AggregatedData],
        incoming: Any,
        phase: str,
    ) -> Tuple[AggregatedData, MergeReport]:
        data = AggregatedData.from_dict(existing.to_dict()) if existing is not None else AggregatedData()
        pages, links, extracted = self._unpack(incoming)

        added = updated = skipped = 0
        for page in pages:
            outcome = self._merge_page(data, page, phase)
            if outcome == "added":
                added += 1
            elif outcome == "updated":
                updated += 1
            else:
                skipped += 1

        if links:
            normalized_links = [normalize_url(link) for link in links]
            data.links = merge_lists(data.links, [link for link in normalized_links if link])
        if extracted:
            self._merge_extracted(data, extracted)
        self._harvest_extracted(data)
        self._update_statistics(data)

        report = MergeReport(added=added, updated=updated, skipped=skipped)
        log_event(
            logger,
            logging.INFO,
            "data_aggregated",
            phase=phase,
            added=added,
            updated=updated,
            skipped=skipped,
            total_pages=data.stats["total_pages"],
            total_links=data.stats["total_links"],
            data_points=data.stats["data_points"],
        )
        return data, report

    def _unpack(self, incoming: Any) -> Tuple[List[Dict[str, Any]], List[str], Dict[str, Any]]:
        if incoming is None:
            return [], [], {}
        if isinstance(incoming, ScraperResult):
            pages = [page_document(page) for page in incoming.pages if page.success]
            return pages, list(incoming.discovered_links), {}
        if isinstance(incoming, list):
            return [copy.deepcopy(p) for p in incoming if isinstance(p, dict)], [], {}
        if isinstance(incoming, dict):
            raw_pages = incoming.get("pages") or []
            if isinstance(raw_pages, dict):
                raw_pages = list(raw_pages.values())
            pages = [
                page_document(p) if isinstance(p, PageResult) else copy.deepcopy(p)
                for p in raw_pages
                if isinstance(p, (dict, PageResult))
            ]
            raw_links = incoming.get("links") or []
            links = [
                link if isinstance(link, str) else (link.get("url") or link.get("link") or "")
                for link in raw_links
                if isinstance(link, (str, dict))
            ]
            extracted = incoming.get("extracted_data") or incoming.get("extractedData") or {}
            return pages, links, copy.deepcopy(extracted) if isinstance(extracted, dict) else {}
        raise TypeError(f"Cannot aggregate {type(incoming).__name__}")

    def _merge_page(self, data: AggregatedData, page: Dict[str, Any], phase: str) -> str:
        raw_url = page.get("url") or page.get("link") or ""
        url = normalize_url(raw_url) if isinstance(raw_url, str) else ""
        if not url:
            log_event(logger, logging.DEBUG, "page_merge_skipped", phase=phase, keys=sorted(page)[:5])
            return "skipped"

        incoming_ts = _iso_timestamp(page.get("timestamp"))
        existing = data.pages.get(url)
        if existing is None:
            data.pages[url] = {
                **page,
                "url": url,
                "phase": phase,
                "phases": [phase],
                "timestamp": incoming_ts or datetime.now(timezone.utc).isoformat(),
            }
            return "added"

        merged = dict(existing)
        for key, value in page.items():
            if key in ("url", "timestamp", "phases"):
                continue
            merged[key] = _merge_value(existing.get(key), value)
        timestamps = [ts for ts in (existing.get("timestamp"), incoming_ts) if ts]
        merged["timestamp"] = min(timestamps) if timestamps else datetime.now(timezone.utc).isoformat()
        merged["phases"] = merge_lists(existing.get("phases") or [], [phase])
        merged["url"] = url
        data.pages[url] = merged
        return "updated"

    def _merge_extracted(self, data: AggregatedData, extracted: Dict[str, Any]) -> None:
        for key, value in extracted.items():
            if isinstance(value, list):
                data.extracted_data[key] = merge_lists(data.extracted_data.get(key), value)
            elif isinstance(value, dict) and value:
                data.extracted_data[key] = merge_lists(data.extracted_data.get(key), [value])

    def _harvest_extracted(self, data: AggregatedData) -> None:
        bucket = data.extracted_data
        for page in data.pages.values():
            if page.get("title"):
                bucket["titles"] = merge_lists(bucket["titles"], [page["title"]])
            if page.get("description"):
                bucket["descriptions"] = merge_lists(bucket["descriptions"], [page["description"]])
            bucket["technologies"] = merge_lists(bucket["technologies"], page.get("technologies") or [])
            contact = page.get("contact_info") or {}
            for key in ("emails", "phones", "addresses"):
                bucket[key] = merge_lists(bucket[key], contact.get(key) or [])
            social = page.get("social_links") or {}
            if isinstance(social, dict):
                bucket["social_links"] = merge_lists(bucket["social_links"], list(social.values()))
            structured = page.get("structured_data") or {}
            if isinstance(structured, dict):
                for entity in structured.get("json_ld") or []:
                    bucket["structured_entities"] = merge_lists(bucket["structured_entities"], [entity])

    def _update_statistics(self, data: AggregatedData) -> None:
        unique_links = set(data.links)
        technologies = set()
        phase_counts: Dict[str, int] = {}
        for page in data.pages.values():
            for field_name in ("links", "discovered_links"):
                for link in page.get(field_name) or []:
                    url = link if isinstance(link, str) else (link.get("url") if isinstance(link, dict) else None)
                    normalized = normalize_url(url) if url else ""
                    if normalized:
                        unique_links.add(normalized)
            for tech in page.get("technologies") or []:
                technologies.add(tech)
            for phase in page.get("phases") or ([page["phase"]] if page.get("phase") else []):
                phase_counts[phase] = phase_counts.get(phase, 0) + 1

        data.stats = {
            "total_pages": len(data.pages),
            "total_links": len(unique_links),
            "unique_technologies": len(technologies),
            "phase_counts": phase_counts,
            "data_points": self.count_data_points(data),
        }

    @staticmethod
    def count_data_points(data: AggregatedData) -> int:
        count = 0
        for page in data.pages.values():
            count += sum(1 for key in ("title", "description", "text_content") if page.get(key))
            for key in COUNTED_LIST_FIELDS:
                value = page.get(key)
                if isinstance(value, list):
                    count += len(value)
            forms = page.get("forms")
            if isinstance(forms, list):
                count += len(forms)
            elif isinstance(forms, int) and not isinstance(forms, bool):
                count += forms
            for key in COUNTED_DICT_FIELDS:
                value = page.get(key)
                if isinstance(value, dict):
                    count += len(value)
        for value in data.extracted_data.values():
            if isinstance(value, list):
                count += len(value)
        return count

    def format_for_ui(self, data: Optional[AggregatedData]) -> Dict[str, Any]:
        """Flatten aggregated data into lists plus a short summary."""
        data = data or AggregatedData()
        pages = [copy.deepcopy(data.pages[url]) for url in sorted(data.pages)]
        stats = copy.deepcopy(data.stats)
        return {
            "pages": pages,
            "stats": stats,
            "extracted_data": copy.deepcopy(data.extracted_data),
            "summary": {
                "total_pages": stats.get("total_pages", 0),
                "total_links": stats.get("total_links", 0),
                "unique_technologies": stats.get("unique_technologies", 0),
                "data_points": stats.get("data_points", 0),
                "phases": sorted(stats.get("phase_counts", {})),
                "technologies": list(data.extracted_data.get("technologies", []))[:10],
            },
        }


def generate_suggestions(data: Optional[AggregatedData], available: Sequence[str] = ()) -> List[str]:
    """Next-step hints derived from what the session has collected so far."""
    if data is None or not data.stats.get("total_pages"):
        return ["Start with the Static HTML scraper for quick results"]

    suggestions: List[str] = []
    used = set(data.stats.get("phase_counts", {}))
    available_set = set(available) if available else {"static", "impersonate", "api"}

    if "static" in available_set and "static" not in used:
        suggestions.append("Try the Static HTML scraper for fast extraction")
    if "impersonate" in available_set and "impersonate" not in used:
        suggestions.append("Use the browser-impersonating scraper for sites that block plain clients")

    total_pages = data.stats.get("total_pages", 0)
    if data.stats.get("data_points", 0) < total_pages * 5:
        suggestions.append("Pages have limited data - try the browser-impersonating scraper")
    if data.stats.get("total_links", 0) < total_pages * 10:
        suggestions.append("Few links discovered - consider deeper crawling")
    return suggestions
