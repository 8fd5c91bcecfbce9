"""Inclusion policy deciding which projects, repositories and tags are enumerated."""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Dict, Iterable, List, Optional, Pattern, Tuple

from .models import StrictTarget, WhiteList

logger = logging.getLogger(__name__)

# Keys made only of repository-name characters are taken literally.
_EXACT_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._/-]*$")


class PolicyMode(str, Enum):
    """How the catalog is enumerated."""

    OPEN = "open"
    MATCH = "match"
    STRICT = "strict"


def is_exact_name(key: str) -> bool:
    """Return True if a match-table key is a plain project or image name."""
    return bool(_EXACT_NAME.match(key))


class InclusionPolicy:
    """Read-only view over the whitelist for one backend variant.

    A non-empty strict list wins over the match table; an empty match table
    and strict list mean everything reachable is enumerated.
    """

    def __init__(
        self,
        table: Optional[Dict[str, List[str]]] = None,
        strict: Optional[List[StrictTarget]] = None,
    ) -> None:
        self._table: Dict[str, List[str]] = dict(table or {})
        self._strict: List[StrictTarget] = list(strict or [])
        self._exact: Dict[str, List[str]] = {}
        self._patterns: List[Tuple[Pattern[str], List[str]]] = []

        for key, tags in self._table.items():
            if is_exact_name(key):
                self._exact[key] = list(tags or [])
                continue
            try:
                self._patterns.append((re.compile(key), list(tags or [])))
            except re.error as e:
                logger.warning(f"Ignoring whitelist key {key!r}, not a valid pattern: {e}")

    @classmethod
    def for_backend(cls, whitelist: Optional[WhiteList], backend_kind: str) -> "InclusionPolicy":
        """Build the policy using the match table that belongs to the backend."""
        whitelist = whitelist or WhiteList()
        table = whitelist.harbor if backend_kind == "harbor" else whitelist.registry
        return cls(table=table, strict=whitelist.strict)

    @property
    def mode(self) -> PolicyMode:
        if self._strict:
            return PolicyMode.STRICT
        if self._table:
            return PolicyMode.MATCH
        return PolicyMode.OPEN

    def should_enumerate_open(self) -> bool:
        """True iff neither a match table nor a strict list is configured."""
        return self.mode is PolicyMode.OPEN

    def has_patterns(self) -> bool:
        """True if matching needs the backend's candidate listing."""
        return bool(self._patterns)

    def match_candidates(self, candidate_names: Iterable[str]) -> Dict[str, List[str]]:
        """Resolve the match table against candidate names.

        Exact keys are returned unchanged with their tag list. Pattern keys are
        searched in every candidate; the first configured pattern that matches
        a candidate wins and a candidate matches at most one key.

        Args:
            candidate_names: Project or image names listed by the backend

        Returns:
            Dict mapping names to tag (or repository) lists; an empty list
            means every entry under that name
        """
        matched: Dict[str, List[str]] = {
            name: list(tags) for name, tags in self._exact.items()
        }

        for candidate in sorted(set(candidate_names)):
            if candidate in matched:
                continue
            for pattern, tags in self._patterns:
                if pattern.search(candidate):
                    matched[candidate] = list(tags)
                    break

        return matched

    def strict_targets(self) -> List[StrictTarget]:
        """Return the explicit strict-mode targets verbatim."""
        return list(self._strict)
