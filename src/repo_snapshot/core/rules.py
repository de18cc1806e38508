"""Ordered include/exclude rule sets with first-match semantics.

A rule set is an ordered list of ``(decision, pattern)`` pairs. A path is
checked against the rules top to bottom and the first matching rule decides.
When nothing matches, the implicit terminal rule excludes the path.

Patterns use rsync filter syntax so the same rule set can be handed to the
rsync executor verbatim:

- a leading ``/`` anchors the pattern at the transfer root
- a trailing ``/`` only matches directories
- a pattern without ``/`` matches the last path component at any depth
- ``*`` matches within one path component, ``**`` crosses ``/``
- ``?`` matches a single character other than ``/``
- ``dir/***`` matches ``dir`` itself and everything below it

A directory that is not admitted is never descended into, so a file can only
be admitted if every ancestor directory is admitted as well (see
:meth:`RuleSet.admits`).
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional


class Decision(Enum):
    """Verdict of a rule."""

    INCLUDE = "+"
    EXCLUDE = "-"


def _glob_to_regex(glob: str) -> str:
    parts = []
    i = 0
    while i < len(glob):
        c = glob[i]
        if c == "*":
            if glob.startswith("**", i):
                parts.append(".*")
                i += 2
                while i < len(glob) and glob[i] == "*":
                    i += 1
                continue
            parts.append("[^/]*")
        elif c == "?":
            parts.append("[^/]")
        elif c == "[":
            end = glob.find("]", i + 2)
            if end == -1:
                parts.append(re.escape(c))
            else:
                body = glob[i + 1 : end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                parts.append(f"[{body}]")
                i = end
        else:
            parts.append(re.escape(c))
        i += 1
    return "".join(parts)


@dataclass
class Rule:
    """A single include or exclude pattern."""

    decision: Decision
    pattern: str
    _regex: re.Pattern = field(init=False, repr=False, compare=False)
    _dir_only: bool = field(init=False, repr=False, compare=False)
    _scope: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.pattern or self.pattern == "/":
            raise ValueError(f"invalid pattern: {self.pattern!r}")

        body = self.pattern
        tail = ""
        self._dir_only = False
        if body.endswith("/***"):
            body = body[:-4]
            tail = "(?:/.*)?"
        elif body.endswith("/"):
            body = body.rstrip("/")
            self._dir_only = True

        if body.startswith("/"):
            self._scope = "anchored"
            body = body.lstrip("/")
            prefix = ""
        elif "/" in body or "**" in body or tail:
            self._scope = "path"
            prefix = "(?:.*/)?"
        else:
            self._scope = "name"
            prefix = ""

        self._regex = re.compile(prefix + _glob_to_regex(body) + tail)

    def matches(self, path: str, is_dir: bool = False) -> bool:
        """Check whether this pattern matches ``path`` (relative to the root)."""
        if self._dir_only and not is_dir:
            return False
        rel = path.strip("/")
        if not rel:
            return False
        if self._scope == "name":
            rel = rel.rsplit("/", 1)[-1]
        return self._regex.fullmatch(rel) is not None

    def to_filter_line(self) -> str:
        return f"{self.decision.value} {self.pattern}"


class RuleSet:
    """An ordered, first-match-wins list of rules with a default-deny tail."""

    DEFAULT = Decision.EXCLUDE

    def __init__(self, rules: Iterable[Rule] = (), name: str = "") -> None:
        self.name = name
        self._rules: list[Rule] = list(rules)

    @classmethod
    def parse(cls, lines: Iterable[str], name: str = "") -> "RuleSet":
        """Build a rule set from ``+ pattern`` / ``- pattern`` lines.

        Blank lines and ``#`` comments are ignored.
        """
        rules = []
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            prefix, _, pattern = line.partition(" ")
            try:
                decision = Decision(prefix)
            except ValueError:
                raise ValueError(f"rule must start with '+' or '-': {raw!r}") from None
            rules.append(Rule(decision, pattern.strip()))
        return cls(rules, name=name)

    def include(self, *patterns: str) -> "RuleSet":
        """Append include rules; returns self for chaining."""
        self._rules.extend(Rule(Decision.INCLUDE, p) for p in patterns)
        return self

    def exclude(self, *patterns: str) -> "RuleSet":
        """Append exclude rules; returns self for chaining."""
        self._rules.extend(Rule(Decision.EXCLUDE, p) for p in patterns)
        return self

    def match(self, path: str, is_dir: bool = False) -> Optional[Rule]:
        """Return the first rule matching ``path``, or None."""
        for rule in self._rules:
            if rule.matches(path, is_dir):
                return rule
        return None

    def evaluate(self, path: str, is_dir: bool = False) -> Decision:
        """Decision for ``path`` alone, ignoring its ancestors."""
        rule = self.match(path, is_dir)
        return rule.decision if rule else self.DEFAULT

    def admits(self, path: str, is_dir: bool = False) -> bool:
        """Whether ``path`` would be transferred, including descent into parents."""
        parts = [p for p in path.strip("/").split("/") if p]
        if not parts:
            return True
        for depth in range(1, len(parts)):
            ancestor = "/" + "/".join(parts[:depth])
            if self.evaluate(ancestor, is_dir=True) is not Decision.INCLUDE:
                return False
        return self.evaluate("/" + "/".join(parts), is_dir) is Decision.INCLUDE

    def to_filter_lines(self) -> list[str]:
        """Render as rsync filter rules, ending with the default-deny rule."""
        return [rule.to_filter_line() for rule in self._rules] + ["- *"]

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RuleSet({self.name!r}, {len(self._rules)} rules)"
