"""
Ignore-rule resolution for build contexts.

Patterns follow .dockerignore semantics:
    - blank lines and lines starting with '#' are skipped
    - '!' re-includes a path excluded by an earlier pattern
    - '*' and '?' never cross '/', '**' matches any number of directories
    - a pattern matching a directory excludes everything below it
    - the last matching pattern wins

Rules are layered as: defaults (VCS directories, the ignore file itself), then the
user's patterns, then the forced includes every build needs (Dockerfiles and
compose files).

Two modes, fixed for a whole build:
    - shared: the project root's ignore file applies to every service, paths are
      matched relative to the project root
    - multi: each service's context directory carries its own ignore file, paths
      are matched relative to that context
"""

import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .. import constants
from ..datacls import Project, ServiceDescriptor

logger = logging.getLogger(__name__)

WILDCARD_CHARS = "*?[\\"


@dataclass(frozen=True)
class IgnoreRule:
    pattern: str
    negated: bool
    regex: re.Pattern
    forced: bool = False

    @property
    def literal_prefix(self) -> str:
        """Part of the pattern before the first wildcard."""
        for i, c in enumerate(self.pattern):
            if c in WILDCARD_CHARS:
                return self.pattern[:i]
        return self.pattern

    def matches(self, rel_path: str) -> bool:
        """True if the rule matches the path or one of its parent directories."""
        parts = rel_path.split("/")
        for i in range(1, len(parts) + 1):
            if self.regex.match("/".join(parts[:i])):
                return True
        return False


@dataclass(frozen=True)
class IgnoreRuleSet:
    """
    Ordered exclusion rules plus the directory paths are matched against.

    `scope` is the service name in multi mode and None in shared mode.
    """
    base_dir: Path
    rules: Tuple[IgnoreRule, ...]
    scope: Optional[str] = None
    source: Optional[Path] = None

    @property
    def patterns(self) -> List[str]:
        return [("!" if r.negated else "") + r.pattern for r in self.rules]

    def relative(self, path: Path) -> Optional[str]:
        """Posix path of `path` relative to `base_dir`, None if it lies outside."""
        try:
            rel = path.resolve().relative_to(self.base_dir.resolve())
        except ValueError:
            return None
        return rel.as_posix()

    def is_excluded(self, path: Path) -> bool:
        rel = self.relative(path)
        if rel is None or rel == ".":
            return False
        return self.is_excluded_rel(rel)

    def is_excluded_rel(self, rel_path: str) -> bool:
        excluded = False
        for rule in self.rules:
            if rule.matches(rel_path):
                excluded = not rule.negated
        return excluded

    def may_reinclude_below(self, rel_dir: str) -> bool:
        """
        Whether a user negation could re-include something under an excluded directory.

        Forced includes are not considered, so excluded directories such as '.git'
        can be pruned without walking them.
        """
        for rule in self.rules:
            if not rule.negated or rule.forced:
                continue
            prefix = rule.literal_prefix
            if not prefix or prefix.startswith(rel_dir + "/") or rel_dir.startswith(prefix.rstrip("/")):
                return True
        return False


def compile_pattern(pattern: str) -> re.Pattern:
    """Translate one cleaned .dockerignore pattern into an anchored regex."""
    out = []
    i, n = 0, len(pattern)
    while i < n:
        c = pattern[i]
        if c == "*":
            if i + 1 < n and pattern[i + 1] == "*":
                i += 2
                if i < n and pattern[i] == "/":
                    i += 1
                    out.append("(?:.*/)?")
                else:
                    out.append(".*")
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            j = pattern.find("]", i + 1)
            if j == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:j]
                if body[:1] in ("!", "^"):
                    body = "^" + body[1:]
                out.append("[" + body.replace("\\", "\\\\") + "]")
                i = j + 1
                continue
        elif c == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("^" + "".join(out) + "$")


def _clean(pattern: str) -> str:
    pattern = pattern.strip()
    while pattern.startswith("./"):
        pattern = pattern[2:]
    pattern = pattern.lstrip("/")
    if pattern:
        pattern = posixpath.normpath(pattern)
    return "" if pattern == "." else pattern


def parse_rule(line: str, forced: bool = False) -> Optional[IgnoreRule]:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    negated = line.startswith("!")
    if negated:
        line = line[1:]
    pattern = _clean(line)
    if not pattern:
        return None
    return IgnoreRule(pattern=pattern, negated=negated, regex=compile_pattern(pattern), forced=forced)


def parse_patterns(lines: List[str], forced: bool = False) -> List[IgnoreRule]:
    rules = []
    for line in lines:
        rule = parse_rule(line, forced=forced)
        if rule is not None:
            rules.append(rule)
    return rules


class IgnoreRuleResolver:
    """Computes the IgnoreRuleSet that filters each service's build context."""

    def __init__(self, project: Project, multi_dockerignore: bool = False):
        self.project = project
        self.multi = multi_dockerignore
        logger.debug(f"IgnoreRuleResolver in {'multi' if self.multi else 'shared'} mode for '{project.name}'")

    def _read_patterns(self, ignore_file: Path) -> List[str]:
        if not ignore_file.is_file():
            logger.debug(f"No ignore file at '{ignore_file}', using defaults only.")
            return []
        lines = ignore_file.read_text(encoding="utf-8", errors="replace").splitlines()
        logger.debug(f"Read {len(lines)} line(s) from '{ignore_file}'")
        return lines

    def _build(self, base_dir: Path, scope: Optional[str]) -> IgnoreRuleSet:
        ignore_file = base_dir / constants.DOCKERIGNORE_NAME
        rules = (
            parse_patterns(list(constants.DEFAULT_IGNORE_PATTERNS))
            + parse_patterns(self._read_patterns(ignore_file))
            + parse_patterns(list(constants.FORCED_INCLUDE_PATTERNS), forced=True)
        )
        return IgnoreRuleSet(
            base_dir=base_dir,
            rules=tuple(rules),
            scope=scope,
            source=ignore_file if ignore_file.is_file() else None,
        )

    def resolve(self, service: ServiceDescriptor) -> IgnoreRuleSet:
        if not self.multi:
            return self._build(self.project.path, None)
        context = service.build_context_path or self.project.path
        return self._build(context, service.name)

    def resolve_all(self) -> Dict[str, IgnoreRuleSet]:
        return {s.name: self.resolve(s) for s in self.project.buildable_services}
