"""
app/validators/job_validator.py

Validation for scrape job definitions before they reach the scheduler.
"""

from __future__ import annotations

from urllib.parse import urlparse

import soupsieve
from soupsieve import SelectorSyntaxError

from app.scheduler.cron import CronSchedule
from app.scraping.errors import JobValidationError
from app.scraping.parsing import SelectorExtractor
from app.scraping.types import ScrapeJobDefinition

_REQUIRED_SELECTOR_FIELDS: tuple[str, ...] = ("title", "address")


class JobDefinitionValidator:
    """
    Collects every problem with a definition and raises them together.
    """

    def __init__(self, *, timezone: str = "UTC") -> None:
        self._timezone = timezone

    def validate(self, definition: ScrapeJobDefinition) -> None:
        issues = self.issues(definition)
        if issues:
            raise JobValidationError(issues)

    def issues(self, definition: ScrapeJobDefinition) -> list[str]:
        issues: list[str] = []

        if not definition.name or not definition.name.strip():
            issues.append("name: must not be empty")

        issues.extend(self._url_issues(definition.target_url))

        try:
            CronSchedule.parse(definition.schedule, timezone=self._timezone)
        except ValueError as exc:
            issues.append(f"schedule: {exc}")

        issues.extend(self._selector_issues(definition))

        rate = definition.rate_limit_per_second
        if rate is not None and rate <= 0:
            issues.append("rate_limit_per_second: must be positive")

        return issues

    @staticmethod
    def _url_issues(url: str) -> list[str]:
        if not url or not url.strip():
            return ["target_url: must not be empty"]
        parsed = urlparse(url.strip())
        if parsed.scheme not in {"http", "https"}:
            return [f"target_url: unsupported scheme '{parsed.scheme or ''}'"]
        if not parsed.netloc:
            return ["target_url: missing host"]
        return []

    @classmethod
    def _selector_issues(cls, definition: ScrapeJobDefinition) -> list[str]:
        issues: list[str] = []
        selectors = definition.selectors or {}

        for field in _REQUIRED_SELECTOR_FIELDS:
            candidates = [c for c in selectors.get(field, []) if c and c.strip()]
            if not candidates:
                issues.append(f"selectors.{field}: at least one candidate selector is required")

        for field, candidates in selectors.items():
            for candidate in candidates:
                problem = cls._css_problem(candidate)
                if problem:
                    issues.append(f"selectors.{field}: {problem}")

        if definition.container_selector:
            problem = cls._css_problem(definition.container_selector)
            if problem:
                issues.append(f"container_selector: {problem}")

        return issues

    @staticmethod
    def _css_problem(candidate: str) -> str | None:
        css, _ = SelectorExtractor.split_candidate(candidate)
        if not css:
            return f"'{candidate}' is empty"
        try:
            soupsieve.compile(css)
        except (SelectorSyntaxError, ValueError, NotImplementedError) as exc:
            return f"invalid CSS selector '{candidate}': {exc}"
        return None
