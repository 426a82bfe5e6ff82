"""Filter chain deciding which index entries are not mirrored.

A rule is one of three shapes:

- ``PatternRule`` -- a regex searched in the candidate string.
- ``PredicateRule`` -- a callable; a truthy return value is a match.
- ``AnyRule`` -- an ordered collection of rules; matches if any child
  does, stopping at the first hit.

``compile_rule()`` turns what users write in config (strings, compiled
patterns, callables, lists of those) into a rule tree once, so matching
never has to inspect types.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Union

from ..core.index import IndexEntry

logger = logging.getLogger(__name__)

# The perl runtime itself and its forks/embeddings, matched against the
# file name portion of the distribution path.
LANGUAGE_DISTRIBUTION_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"/(?:emb|syb|bio)?perl-\d",
        r"/(?:parrot|ponie)-\d",
        r"/(?:kurila)-\d",
        r"/\bperl-?5\.004",
        r"/\bperl_mlb\.zip",
    )
)


@dataclass(frozen=True)
class PatternRule:
    pattern: re.Pattern

    def first_match(self, value: str) -> Rule | None:
        return self if self.pattern.search(value) else None

    def __str__(self) -> str:
        return f"/{self.pattern.pattern}/"


@dataclass(frozen=True)
class PredicateRule:
    predicate: Callable[[str], Any]

    def first_match(self, value: str) -> Rule | None:
        return self if self.predicate(value) else None

    def __str__(self) -> str:
        return getattr(self.predicate, "__name__", repr(self.predicate))


@dataclass(frozen=True)
class AnyRule:
    rules: tuple[Rule, ...]

    def first_match(self, value: str) -> Rule | None:
        for rule in self.rules:
            hit = rule.first_match(value)
            if hit is not None:
                return hit
        return None

    def __str__(self) -> str:
        return "any(" + ", ".join(str(rule) for rule in self.rules) + ")"


Rule = Union[PatternRule, PredicateRule, AnyRule]


def compile_rule(value: Any) -> Rule | None:
    """Build a rule tree from a config value.

    Accepts a regex string, a compiled ``re.Pattern``, a callable, an
    existing rule, or a list/tuple of any of these (nested lists allowed).
    ``None`` and empty collections mean "no rule".

    Raises:
        TypeError: For any other value.
        re.error: For an invalid regex string.
    """
    if value is None:
        return None
    if isinstance(value, (PatternRule, PredicateRule, AnyRule)):
        return value
    if isinstance(value, str):
        return PatternRule(re.compile(value))
    if isinstance(value, re.Pattern):
        return PatternRule(value)
    if isinstance(value, (list, tuple)):
        rules = tuple(
            rule for rule in (compile_rule(v) for v in value) if rule is not None
        )
        return AnyRule(rules) if rules else None
    if callable(value):
        return PredicateRule(value)
    raise TypeError(
        f"filter rule must be a regex, a callable or a list, not {type(value).__name__}"
    )


class FilterChain:
    """Decide whether an index entry is skipped.

    Args:
        skip_language_distributions: Skip perl itself and known forks.
        path_filters: Rules matched against the distribution path.
        module_filters: Rules matched against the module name.
    """

    def __init__(
        self,
        skip_language_distributions: bool = False,
        path_filters: Any = None,
        module_filters: Any = None,
    ) -> None:
        self.skip_language_distributions = skip_language_distributions
        self.path_rule = compile_rule(path_filters)
        self.module_rule = compile_rule(module_filters)

    def filter_module(self, entry: IndexEntry) -> bool:
        """Return ``True`` if *entry* must not be mirrored.

        Checks run in order and the first hit wins: language
        distributions, then path rules, then module rules.
        """
        if self.skip_language_distributions and any(
            pattern.search(entry.path)
            for pattern in LANGUAGE_DISTRIBUTION_PATTERNS
        ):
            return True

        if self._do_filter("path", self.path_rule, entry.path):
            return True
        if self._do_filter("module", self.module_rule, entry.module):
            return True
        return False

    @staticmethod
    def _do_filter(what: str, rule: Rule | None, value: str) -> bool:
        if rule is None:
            return False
        hit = rule.first_match(value)
        if hit is None:
            return False
        logger.debug("skipping %s because %s matches %s", value, what, hit)
        return True
