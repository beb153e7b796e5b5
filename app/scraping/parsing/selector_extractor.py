"""
BeautifulSoup-based field extraction driven by ordered selector candidate chains.
"""

from __future__ import annotations

import logging
import re
from collections import defaultdict
from collections.abc import Mapping, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

from app.scraping.logging_utils import log_event
from app.scraping.types import ABSENT, Matched, SelectorMatch

logger = logging.getLogger(__name__)

KNOWN_CONTAINER_SELECTORS: tuple[str, ...] = (
    ".property-item",
    ".listing-item",
    ".property-card",
    ".property",
    "[data-testid*='property']",
)
DEFAULT_FIELD_SELECTORS: dict[str, list[str]] = {
    "source_url": ["a[href]"],
}
URL_FIELDS = frozenset({"source_url"})
_ATTRIBUTE_SUFFIX = re.compile(r"^(?P<css>.+?)@(?P<attr>[A-Za-z_][\w:.-]*)$")
_IGNORED_SIBLING_TAGS = frozenset(
    {"script", "style", "meta", "link", "br", "hr", "option", "head", "title", "noscript"}
)
_MAX_CONTAINERS = 500


class SelectorExtractor:
    """
    Deterministic extraction utilities for listing pages.
    """

    @staticmethod
    def parse_document(markup: str) -> BeautifulSoup:
        return BeautifulSoup(markup, "html.parser")

    @classmethod
    def with_defaults(cls, selector_map: Mapping[str, Sequence[str]]) -> dict[str, list[str]]:
        """
        Append built-in fallback candidates after the configured ones.
        """

        merged = {field: list(candidates) for field, candidates in selector_map.items()}
        for field, defaults in DEFAULT_FIELD_SELECTORS.items():
            existing = merged.setdefault(field, [])
            existing.extend(candidate for candidate in defaults if candidate not in existing)
        return merged

    @classmethod
    def find_containers(
        cls,
        soup: BeautifulSoup,
        *,
        root_selector: str | None = None,
    ) -> tuple[list[Tag], str]:
        """
        Locate listing containers and report which strategy found them.
        """

        if root_selector:
            return cls._safe_select(soup, root_selector)[:_MAX_CONTAINERS], f"root:{root_selector}"

        for selector in KNOWN_CONTAINER_SELECTORS:
            containers = cls._safe_select(soup, selector)
            if containers:
                return containers[:_MAX_CONTAINERS], f"known:{selector}"

        repeated = cls._repeated_siblings(soup)
        if repeated:
            return repeated[:_MAX_CONTAINERS], "heuristic:repeated-siblings"

        return [soup], "document"

    @classmethod
    def first_match(
        cls,
        node: Tag,
        candidates: Sequence[str],
        *,
        field: str = "",
        base_url: str | None = None,
    ) -> SelectorMatch:
        """
        Try candidates in order and return the first non-empty value.
        """

        for candidate in candidates:
            css, attribute = cls.split_candidate(candidate)
            if attribute is None and field in URL_FIELDS:
                attribute = "href"
            for element in cls._safe_select(node, css):
                value = cls._element_value(element, attribute)
                if not value:
                    continue
                if field in URL_FIELDS and base_url:
                    value = urljoin(base_url, value)
                return Matched(value=value, selector=candidate)
        return ABSENT

    @classmethod
    def extract(
        cls,
        source: str | Tag,
        selector_map: Mapping[str, Sequence[str]],
        *,
        base_url: str | None = None,
    ) -> dict[str, str]:
        """
        Return raw strings for every field with a matching candidate.

        Fields with no match are left out; whether that matters is decided
        by the caller.
        """

        node = cls.parse_document(source) if isinstance(source, str) else source
        values: dict[str, str] = {}
        for field, candidates in selector_map.items():
            match = cls.first_match(node, candidates, field=field, base_url=base_url)
            if isinstance(match, Matched):
                values[field] = match.value
        return values

    @staticmethod
    def split_candidate(candidate: str) -> tuple[str, str | None]:
        match = _ATTRIBUTE_SUFFIX.match(candidate.strip())
        if match is None:
            return candidate.strip(), None
        return match.group("css").strip(), match.group("attr")

    @classmethod
    def _element_value(cls, element: Tag, attribute: str | None) -> str:
        if attribute is None:
            return cls._clean_text(element.get_text(" ", strip=True))

        raw = element.get(attribute)
        if raw is None and attribute == "href":
            link = element.find("a", href=True)
            raw = link.get("href") if isinstance(link, Tag) else None
        if isinstance(raw, list):
            raw = " ".join(raw)
        return cls._clean_text(raw or "")

    @staticmethod
    def _safe_select(node: Tag, selector: str) -> list[Tag]:
        try:
            return list(node.select(selector))
        except (SelectorSyntaxError, ValueError, NotImplementedError) as exc:
            log_event(
                logger,
                logging.WARNING,
                "invalid_selector",
                selector=selector,
                error=str(exc),
            )
            return []

    @staticmethod
    def _clean_text(value: str) -> str:
        return re.sub(r"\s+", " ", value).strip()

    @classmethod
    def _repeated_siblings(cls, soup: BeautifulSoup) -> list[Tag]:
        """
        Find the largest group of sibling elements sharing a tag/class signature.

        Only groups of at least two members whose elements carry a class and
        contain a link or heading qualify.
        """

        best: list[Tag] = []
        best_text = 0
        for parent in soup.find_all(True):
            groups: dict[tuple[str, tuple[str, ...]], list[Tag]] = defaultdict(list)
            for child in parent.find_all(True, recursive=False):
                if child.name in _IGNORED_SIBLING_TAGS:
                    continue
                classes = tuple(sorted(child.get("class") or ()))
                if not classes:
                    continue
                groups[(child.name, classes)].append(child)

            for members in groups.values():
                if len(members) < 2:
                    continue
                if not all(member.find(["a", "h1", "h2", "h3", "h4"]) for member in members):
                    continue
                text_size = sum(len(member.get_text(" ", strip=True)) for member in members)
                if len(members) > len(best) or (len(members) == len(best) and text_size > best_text):
                    best = members
                    best_text = text_size
        return best
