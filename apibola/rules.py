"""
Rule database loader.

The database is a line oriented file of records, one per identifier
declaration::

    # comment
    accountId=abc-123
        disallow regex path="^/admin/.*"
        permit title="Accounts API"
        values abc-123 def-456
        properties fuzz

A line starting in column 0 opens a record, indented lines add tuples to it.
Tokens are split with shell quoting rules and are either ``name=value`` or a
bare ``name``.
"""

import shlex
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from .config import DISALLOW, PERMIT, VALUES, PROPERTIES, REGEX, FUZZ
from .errors import ConfigurationError


class Qualifier(Enum):
    """How a disallow/permit tuple compares its attributes."""
    NONE = "none"
    REGEX = "regex"


@dataclass(frozen=True)
class Attribute:
    name: str
    value: str = ""


@dataclass(frozen=True)
class RuleTuple:
    """
    One rule line.

    ``keyword`` is the name of the line's first attribute. For clause lines
    ``attributes`` excludes the keyword and any qualifier token.
    """
    keyword: str
    attributes: tuple[Attribute, ...] = ()
    qualifier: Qualifier = Qualifier.NONE

    @property
    def is_regex(self) -> bool:
        return self.qualifier is Qualifier.REGEX

    def tokens(self) -> list[str]:
        """Flattened literal tokens, as used by ``values`` clauses."""
        return [attr.name for attr in self.attributes]


@dataclass(frozen=True)
class Record:
    """A declaration block for one identifier."""
    name: str
    primary: str = ""
    tuples: tuple[RuleTuple, ...] = ()

    def clause(self, keyword: str) -> list[RuleTuple]:
        """Tuples under ``keyword``, in declaration order."""
        return [t for t in self.tuples if t.keyword == keyword]

    def has_clause(self, keyword: str) -> bool:
        return any(t.keyword == keyword for t in self.tuples)

    def values(self) -> list[str]:
        """Enumerated literal tokens of every ``values`` tuple, in order."""
        out = []
        for t in self.clause(VALUES):
            out.extend(t.tokens())
        return out

    @property
    def fuzz(self) -> bool:
        return any(FUZZ in t.tokens() for t in self.clause(PROPERTIES))


@dataclass(frozen=True)
class RuleStore:
    """Ordered, read-only collection of records."""
    records: tuple[Record, ...] = ()
    _index: dict = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        index: dict[str, list[Record]] = {}
        for record in self.records:
            index.setdefault(record.name, []).append(record)
        object.__setattr__(self, "_index", index)

    def __len__(self) -> int:
        return len(self.records)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def lookup(self, name: str) -> list[Record]:
        """All records declared for ``name``, in file order."""
        return list(self._index.get(name, []))

    def names(self) -> list[str]:
        return list(self._index)

    def primary_values(self, name: str) -> list[str]:
        """Non-empty primary values declared for ``name``, in file order."""
        return [r.primary for r in self.lookup(name) if r.primary]

    def has_clause(self, name: str, keyword: str) -> bool:
        return any(r.has_clause(keyword) for r in self.lookup(name))

    def with_identifier(self, name: str, value: str) -> "RuleStore":
        """Return a new store with an unconstrained ``name=value`` record appended."""
        head = RuleTuple(keyword=name, attributes=(Attribute(name=name, value=value),))
        record = Record(name=name, primary=value, tuples=(head,))
        return RuleStore(self.records + (record,))

    def patterns(self) -> Iterator[tuple]:
        """Yield ``(identifier, pattern)`` for every regex-qualified attribute."""
        for record in self.records:
            for t in record.tuples:
                if t.is_regex:
                    for attr in t.attributes:
                        yield record.name, attr.value


def parse_attribute(token: str) -> Attribute:
    name, sep, value = token.partition("=")
    if not name:
        raise ConfigurationError(f"attribute without a name: {token!r}")
    return Attribute(name=name, value=value if sep else "")


def parse_tuple(line: str, lineno: int = 0) -> RuleTuple:
    """Parse one rule line into a RuleTuple."""
    lexer = shlex.shlex(line, posix=True)
    lexer.whitespace_split = True
    lexer.escape = ""  # backslashes belong to regex patterns
    lexer.commenters = ""  # only whole lines are comments
    try:
        tokens = list(lexer)
    except ValueError as e:
        raise ConfigurationError(f"line {lineno}: {e}") from e

    attributes = [parse_attribute(token) for token in tokens]
    keyword = attributes[0].name
    rest = attributes[1:]
    qualifier = Qualifier.NONE

    if keyword in (DISALLOW, PERMIT):
        if rest and rest[0].name == REGEX and rest[0].value == "":
            qualifier = Qualifier.REGEX
            rest = rest[1:]
        return RuleTuple(keyword=keyword, attributes=tuple(rest), qualifier=qualifier)

    if keyword in (VALUES, PROPERTIES):
        return RuleTuple(keyword=keyword, attributes=tuple(rest))

    return RuleTuple(keyword=keyword, attributes=tuple(attributes))


def loads(text: str) -> RuleStore:
    """Parse a rule database from a string."""
    records = []
    current: Optional[list] = None

    def close():
        if current:
            head = current[0]
            primary = head.attributes[0].value if head.attributes else ""
            records.append(Record(name=head.keyword, primary=primary, tuples=tuple(current)))

    for lineno, raw in enumerate(text.splitlines(), start=1):
        stripped = raw.strip()
        if not stripped or stripped.startswith("#"):
            continue

        indented = raw[0] in (" ", "\t")
        t = parse_tuple(stripped, lineno)

        if not indented:
            close()
            current = [t]
        elif current is None:
            raise ConfigurationError(f"line {lineno}: tuple outside of a record")
        else:
            current.append(t)

    close()
    return RuleStore(tuple(records))


def load(filepath: str) -> RuleStore:
    """Load a rule database from a file."""
    try:
        with open(filepath, "r") as f:
            return loads(f.read())
    except OSError as e:
        raise ConfigurationError(f"could not open rule database {filepath}: {e}") from e
