"""
Session-level deduplication of normalized jobs.

Matching order for each incoming job:
1. Exact key (normalized title, company, normalized location, employment type)
2. Canonical URL (tracking params, trailing slash, www. and case removed)
3. Levenshtein similarity over title|company|location, accepted only when
   the posted dates fall inside the configured time window
"""

import re
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse, urlencode, parse_qsl, urlunparse

from core.scraper_config import DedupConfig
from pipeline.models import NormalizedJob, DuplicateGroup

logger = logging.getLogger(__name__)

# Weakest first; a group reports the weakest reason among its duplicates
REASON_ORDER = ('fuzzy_match', 'url_match', 'exact_match')

TRACKING_PARAMS = {'utm_source', 'utm_medium', 'utm_campaign', 'ref', 'source'}


def canonicalize_url(url: Optional[str]) -> str:
    """Strip tracking params, trailing slash and www., then lowercase."""
    if not url:
        return ''
    try:
        parsed = urlparse(url.strip())
        query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
        netloc = parsed.netloc.lower()
        if netloc.startswith('www.'):
            netloc = netloc[4:]
        path = parsed.path.rstrip('/')
        normalized = urlunparse((parsed.scheme, netloc, path, '', urlencode(query), ''))
    except ValueError:
        normalized = url.strip()
    return normalized.rstrip('/').lower()


def _clean_part(value: Optional[str]) -> str:
    text = (value or '').lower()
    text = re.sub(r'[^\w\s]', ' ', text)
    return re.sub(r'\s+', ' ', text).strip()


def job_signature(job: NormalizedJob) -> str:
    """title|company|location, insensitive to case, punctuation and spacing."""
    title = _clean_part(job.normalized_title or job.title)
    company = _clean_part(job.company)
    location = _clean_part(job.location.normalized)
    return f"{title}|{company}|{location}"


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(sig1: str, sig2: str) -> float:
    """1 - distance / longest length, in [0, 1]."""
    longest = max(len(sig1), len(sig2))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(sig1, sig2) / longest


@dataclass
class DedupResult:
    unique: List[NormalizedJob] = field(default_factory=list)
    duplicate_groups: List[DuplicateGroup] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return sum(len(g.duplicates) for g in self.duplicate_groups)


class DeduplicationEngine:
    """
    Keeps a bounded index of canonical jobs for one scrape session.

    The index survives across deduplicate() calls until clear(). Once it
    holds max_index_size canonicals the oldest entry is evicted.
    """

    def __init__(self, config: Optional[DedupConfig] = None):
        self.config = config or DedupConfig()
        # exact key -> canonical job, insertion ordered for eviction
        self._index: 'OrderedDict[str, NormalizedJob]' = OrderedDict()
        self._signatures: Dict[str, str] = {}
        self._url_index: Dict[str, str] = {}

    @staticmethod
    def _hash_key(job: NormalizedJob) -> str:
        return '|'.join([
            job.normalized_title or job.title,
            job.company.lower(),
            job.location.normalized,
            job.employment_type,
        ])

    @staticmethod
    def _job_url(job: NormalizedJob) -> str:
        """Canonical posting URL, empty when it only points at the career page."""
        url = canonicalize_url(job.external_url)
        if job.source is not None and url == canonicalize_url(job.source.url):
            return ''
        return url

    def _within_window(self, a: NormalizedJob, b: NormalizedJob) -> bool:
        gap = abs((a.posted_date - b.posted_date).total_seconds())
        return gap < self.config.time_window_hours * 3600

    def _find_duplicate(self, job: NormalizedJob, key: str, signature: str) -> Optional[Tuple[str, str, float]]:
        """Returns (canonical key, reason, score) or None."""
        if key in self._index:
            return key, 'exact_match', similarity(signature, self._signatures[key])

        url = self._job_url(job)
        if url and url in self._url_index:
            existing_key = self._url_index[url]
            return existing_key, 'url_match', similarity(signature, self._signatures[existing_key])

        threshold = self.config.fuzzy_threshold
        best: Optional[Tuple[str, str, float]] = None
        for existing_key, existing in self._index.items():
            existing_sig = self._signatures[existing_key]
            longest = max(len(signature), len(existing_sig)) or 1
            # Length difference alone already bounds the achievable similarity
            if 1.0 - abs(len(signature) - len(existing_sig)) / longest < threshold:
                continue
            score = similarity(signature, existing_sig)
            if score >= threshold and self._within_window(job, existing):
                if best is None or score > best[2]:
                    best = (existing_key, 'fuzzy_match', score)
        return best

    def _add_to_index(self, job: NormalizedJob, key: str, signature: str):
        self._index[key] = job
        self._signatures[key] = signature
        url = self._job_url(job)
        if url:
            self._url_index.setdefault(url, key)

        while len(self._index) > self.config.max_index_size:
            evicted_key, evicted = self._index.popitem(last=False)
            self._signatures.pop(evicted_key, None)
            evicted_url = self._job_url(evicted)
            if self._url_index.get(evicted_url) == evicted_key:
                del self._url_index[evicted_url]

    def _is_indexed_canonical(self, job: NormalizedJob, key: str) -> bool:
        canonical = self._index[key]
        return canonical.id == job.id and canonicalize_url(canonical.external_url) == canonicalize_url(job.external_url)

    def deduplicate(self, jobs: List[NormalizedJob]) -> DedupResult:
        """
        Split jobs into unique canonicals and duplicate groups.

        A job identical to a canonical indexed by an earlier call is returned
        as unique again, so re-running on already deduplicated output is a
        no-op.
        """
        result = DedupResult()
        groups: Dict[str, DuplicateGroup] = {}
        emitted = set()

        for job in jobs:
            key = self._hash_key(job)
            signature = job_signature(job)
            match = self._find_duplicate(job, key, signature)

            if match is None:
                result.unique.append(job)
                emitted.add(key)
                self._add_to_index(job, key, signature)
                continue

            canonical_key, reason, score = match
            if reason == 'exact_match' and canonical_key not in emitted and self._is_indexed_canonical(job, canonical_key):
                result.unique.append(job)
                emitted.add(canonical_key)
                continue

            group = groups.get(canonical_key)
            if group is None:
                group = DuplicateGroup(
                    canonical=self._index[canonical_key],
                    duplicates=[job],
                    confidence=score,
                    scores=[score],
                    reasons=[reason],
                    reason=reason,
                )
                groups[canonical_key] = group
                result.duplicate_groups.append(group)
            else:
                group.duplicates.append(job)
                group.scores.append(score)
                group.reasons.append(reason)
                group.confidence = min(group.scores)
                group.reason = min(group.reasons, key=REASON_ORDER.index)

        logger.info(
            f"Deduplication complete: {len(jobs)} total, {len(result.unique)} unique, "
            f"{len(result.duplicate_groups)} duplicate groups"
        )
        return result

    def clear(self):
        """Reset the index"""
        self._index.clear()
        self._signatures.clear()
        self._url_index.clear()
        logger.info("Deduplication index cleared")

    def get_index_size(self) -> int:
        return len(self._index)
