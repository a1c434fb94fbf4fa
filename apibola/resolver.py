"""
Identifier resolution.

Decides which value(s) may be substituted for an identifier in a given call
context, honoring the ordered disallow/permit/values/properties rules of the
rule database.
"""

import re
import secrets
from dataclasses import dataclass, field
from enum import Enum

from .config import CONTEXT_ATTRIBUTES, DISALLOW, PERMIT, VALUES
from .errors import ConfigurationError
from .rules import RuleStore, RuleTuple


class Result(Enum):
    """Outcome of a lookup."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    NEEDS_FUZZ = "needs_fuzz"


@dataclass(frozen=True)
class Context:
    """Where an identifier is being used."""
    path: str  # templated form, e.g. /accounts/{id}
    title: str = ""

    def get(self, attribute: str):
        if attribute not in CONTEXT_ATTRIBUTES:
            return None
        return getattr(self, attribute)


@dataclass(frozen=True)
class Resolution:
    result: Result
    values: list = field(default_factory=list)

    @property
    def first(self):
        return self.values[0] if self.values else None

    @classmethod
    def not_found(cls) -> "Resolution":
        return cls(Result.NOT_FOUND)


# Fuzz selection must not be predictable; tests may pass their own source.
system_random = secrets.SystemRandom()


def compile_pattern(pattern: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigurationError(f'could not compile regex "{pattern}" → {e}') from e


def tuple_matches(t: RuleTuple, context: Context) -> bool:
    """
    Check a disallow/permit tuple against a context.

    Attributes are compared left to right; unknown attribute names are
    skipped and the first failing comparison rejects the tuple. A tuple
    matches when at least one comparison was made and none failed.
    """
    matched = False
    for attr in t.attributes:
        other = context.get(attr.name)
        if other is None:
            continue

        if t.is_regex:
            matched = compile_pattern(attr.value).search(other) is not None
        else:
            matched = attr.value == other

        if not matched:
            return False

    return matched


def clause_matches(tuples: list[RuleTuple], context: Context) -> bool:
    """A clause matches when any one of its tuples does."""
    return any(tuple_matches(t, context) for t in tuples)


def resolve(store: RuleStore, name: str, context: Context, rng=None) -> Resolution:
    """
    Look up the values usable for identifier ``name`` in ``context``.

    Args:
        store: Rule database
        name: Identifier (parameter or property) name
        context: Path and API title of the call
        rng: Randomness provider with a ``choice`` method, defaults to the
            system's cryptographically strong source

    Returns:
        Resolution carrying FOUND/NOT_FOUND/NEEDS_FUZZ and the ordered values
    """
    rng = rng or system_random

    records = store.lookup(name)
    if not records:
        return Resolution.not_found()

    primaries = store.primary_values(name)
    has_values = store.has_clause(name, VALUES)

    if not primaries and not has_values:
        return Resolution.not_found()

    # Unconstrained identifier
    if not has_values and not store.has_clause(name, DISALLOW) and not store.has_clause(name, PERMIT):
        return Resolution(Result.FOUND, primaries)

    out = []
    fuzz = False

    for record in records:
        if clause_matches(record.clause(DISALLOW), context):
            continue

        permits = record.clause(PERMIT)
        if permits and not clause_matches(permits, context):
            continue

        if record.fuzz:
            fuzz = True

        values = record.values()
        if values:
            if fuzz:
                out.append(rng.choice(values))
            else:
                out.extend(values)
        elif not fuzz and record.primary:
            out.append(record.primary)

    if fuzz:
        return Resolution(Result.NEEDS_FUZZ, out)
    if out:
        return Resolution(Result.FOUND, out)
    return Resolution.not_found()
