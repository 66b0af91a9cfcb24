"""
Heuristic HTML parsing strategy.

The least reliable tier: site-specific CSS selectors when the target declares
them, then generic job-card selectors validated against job title patterns,
then a bare regex sweep over the page text for anything that reads like a
job title.
"""

import re
import logging
from typing import List, Optional

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from .base import HtmlStrategy, absolute_url, parse_date
from .models import StrategyKind, TargetConfig, RawJobRecord, SelectorHints

logger = logging.getLogger(__name__)

JOB_SELECTORS = [
    # Generic job containers
    '[data-testid*="job"]',
    '[class*="job-"]',
    '[class*="Job-"]',
    '[class*="position-"]',
    '[class*="opening-"]',
    '[class*="vacancy-"]',
    # Common patterns
    '.job-listing',
    '.job-card',
    '.position-item',
    '.career-item',
    '.opening-item',
    '[role="listitem"]',
    # ATS-hosted boards
    '.jobs-list-item',
    '.position-title',
    '.job-posting',
]

JOB_TITLE_PATTERNS = [
    re.compile(r'(?:Senior|Junior|Lead|Staff|Principal)?\s*(?:Software Engineer|Software Developer|Engineer|Developer)', re.IGNORECASE),
    re.compile(r'(?:Frontend|Backend|Full Stack|DevOps|Data|ML|AI|Security|Mobile|iOS|Android)\s*(?:Engineer|Developer)', re.IGNORECASE),
    re.compile(r'(?:Product|Project|Engineering|Technical)\s*(?:Manager|Lead)', re.IGNORECASE),
    re.compile(r'(?:Data|Machine Learning)\s*(?:Scientist|Engineer)', re.IGNORECASE),
    re.compile(r'(?:UX|UI|Product)\s*(?:Designer|Researcher)', re.IGNORECASE),
    re.compile(r'(?:QA|Test)\s*(?:Engineer|Analyst)', re.IGNORECASE),
]

NAVIGATION_WORDS = re.compile(r'apply|login|sign in|search|menu|home|about', re.IGNORECASE)
REMOTE_HINT = re.compile(r'remote|onsite|on-site|hybrid', re.IGNORECASE)

DEFAULT_TITLE_SELECTOR = 'h1, h2, h3, h4, .title, [class*="title"]'
DEFAULT_LOCATION_SELECTOR = '[class*="location"], [class*="place"]'
DEFAULT_DESCRIPTION_SELECTOR = '[class*="description"], [class*="summary"], p'

MAX_PATTERN_RESULTS = 20


def _select_text(element: Tag, selector: str) -> str:
    found = element.select_one(selector)
    return found.get_text(' ', strip=True) if found else ''


def _select_href(element: Tag, selector: str) -> Optional[str]:
    found = element.select_one(selector)
    if found is None:
        return None
    if found.name != 'a':
        found = found.find('a') or found
    href = found.get('href')
    return href if isinstance(href, str) else None


def looks_like_job_title(text: str) -> bool:
    return any(pattern.search(text) for pattern in JOB_TITLE_PATTERNS)


class HtmlParsingStrategy(HtmlStrategy):
    """Extracts job records from career page markup using heuristics."""

    kind = StrategyKind.HTML_PARSING

    def parse(self, html: str, target: TargetConfig, page_url: Optional[str] = None) -> List[RawJobRecord]:
        base_url = page_url or target.url
        soup = self.get_soup(html)

        records: List[RawJobRecord] = []
        if target.selectors and target.selectors.job_container:
            records = self._extract_with_custom_selectors(soup, target.selectors, target, base_url)
        if not records:
            records = self._extract_with_generic_selectors(soup, target, base_url)
        if not records:
            records = self._extract_with_patterns(soup, target)

        logger.info(f"Extracted {len(records)} jobs via HTML parsing for {target.name}")
        return records

    def _extract_with_custom_selectors(self, soup: BeautifulSoup, selectors: SelectorHints,
                                       target: TargetConfig, base_url: str) -> List[RawJobRecord]:
        """Extract using target-specific selectors."""
        records = []
        for element in soup.select(selectors.job_container):
            title = _select_text(element, selectors.title or DEFAULT_TITLE_SELECTOR)
            if len(title) <= 3:
                continue
            location = _select_text(element, selectors.location or DEFAULT_LOCATION_SELECTOR)
            description = _select_text(element, selectors.description or DEFAULT_DESCRIPTION_SELECTOR)
            href = _select_href(element, selectors.external_url or 'a')
            posted = _select_text(element, selectors.posted_date) if selectors.posted_date else None
            try:
                records.append(self._build(title, location, description, href, target, base_url, posted))
            except ValidationError as e:
                logger.warning(f"Failed to extract job with custom selectors for {target.name}: {e}")
        return records

    def _extract_with_generic_selectors(self, soup: BeautifulSoup, target: TargetConfig,
                                        base_url: str) -> List[RawJobRecord]:
        """Try generic job-card selectors; the first selector that yields jobs wins."""
        for selector in JOB_SELECTORS:
            elements = soup.select(selector)
            if not elements:
                continue
            logger.debug(f"Found {len(elements)} elements with selector: {selector}")

            matched = {id(e) for e in elements}
            records = []
            for element in elements:
                # nested matches (a card's own title node) belong to the outer card
                if any(id(parent) in matched for parent in element.parents):
                    continue
                title = (_select_text(element, DEFAULT_TITLE_SELECTOR + ', [class*="Title"]')
                         or _select_text(element, 'a')
                         or element.get_text(' ', strip=True))
                if len(title) < 5 or len(title) > 150 or not looks_like_job_title(title):
                    continue

                location = _select_text(element, '[class*="location"], [class*="place"], [class*="city"]')
                if not location:
                    location = self._labelled_location(element)
                description = (_select_text(element, '[class*="description"], [class*="summary"], [class*="content"]')
                               or _select_text(element, 'p'))
                href = _select_href(element, 'a')
                if href is None and element.name == 'a':
                    href = element.get('href')
                records.append(self._build(title, location, description, href, target, base_url))

            if records:
                return records
        return []

    def _labelled_location(self, element: Tag) -> str:
        """Location from a 'Location:' style label or a remote/hybrid badge"""
        labels = element.find_all(['dt', 'th', 'label', 'span'], string=re.compile(r'location|based in', re.I))
        for label in labels:
            value_elem = label.find_next_sibling(['dd', 'td', 'div', 'span'])
            if value_elem:
                text = value_elem.get_text(' ', strip=True)
                if len(text) > 2:
                    return text
        for candidate in element.find_all(['span', 'div']):
            text = candidate.get_text(' ', strip=True)
            if text and len(text) < 60 and REMOTE_HINT.search(text):
                return text
        return ''

    def _extract_with_patterns(self, soup: BeautifulSoup, target: TargetConfig) -> List[RawJobRecord]:
        """Last resort: job-title-shaped phrases anywhere in the page text."""
        for tag in soup(['script', 'style', 'noscript']):
            tag.decompose()
        text = soup.get_text('\n')

        titles = []
        for pattern in JOB_TITLE_PATTERNS:
            for match in pattern.finditer(text):
                title = ' '.join(match.group(0).split())
                if 5 < len(title) < 100 and title not in titles:
                    titles.append(title)

        records = []
        for title in titles:
            if len(records) >= MAX_PATTERN_RESULTS:
                break
            if NAVIGATION_WORDS.search(title):
                continue
            records.append(RawJobRecord(
                title=title,
                description=f"{title} position at {target.name}",
                external_url=target.url,
                method=StrategyKind.HTML_PARSING,
            ))
        return records

    def _build(self, title: str, location: str, description: str, href: Optional[str],
               target: TargetConfig, base_url: str, posted: Optional[str] = None) -> RawJobRecord:
        location = location or 'Remote'
        return RawJobRecord(
            title=title,
            location_raw=location,
            is_remote='remote' in location.lower(),
            description=description or f"{title} position at {target.name}",
            external_url=absolute_url(href, base_url) or target.url,
            posted_date=parse_date(posted) if posted else None,
            method=StrategyKind.HTML_PARSING,
        )
