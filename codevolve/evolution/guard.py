"""PathGuard — the allow/deny and content rules for oracle-authored changes.

Both the planner and the writer consult the same guard, so a plan that
somehow slips past planning is still refused at write time.
"""

from __future__ import annotations

import posixpath
import re
from pathlib import PurePosixPath

from codevolve.config import (
    DEFAULT_ALLOWED_PATHS,
    DEFAULT_DANGEROUS_PATTERNS,
    DEFAULT_FORBIDDEN_PATHS,
)


class PathGuard:
    """Path prefix lists plus a dangerous-content regex scan."""

    def __init__(
        self,
        allowed_paths: list[str] | None = None,
        forbidden_paths: list[str] | None = None,
        dangerous_patterns: list[str] | None = None,
    ) -> None:
        self.allowed_paths = list(
            DEFAULT_ALLOWED_PATHS if allowed_paths is None else allowed_paths
        )
        self.forbidden_paths = list(
            DEFAULT_FORBIDDEN_PATHS if forbidden_paths is None else forbidden_paths
        )
        self._patterns = [
            re.compile(p)
            for p in (DEFAULT_DANGEROUS_PATTERNS if dangerous_patterns is None else dangerous_patterns)
        ]

    @property
    def dangerous_patterns(self) -> list[str]:
        return [p.pattern for p in self._patterns]

    def path_errors(self, file_path: str) -> list[str]:
        """Every rule the path breaks; empty when it may be written."""
        if not file_path or not file_path.strip():
            return ["Empty file path"]

        errors = []
        posix = file_path.replace("\\", "/")
        pure = PurePosixPath(posix)
        if pure.is_absolute() or ".." in pure.parts:
            errors.append(f"Path traversal detected: {file_path}")

        # Prefix rules only hold for the canonical spelling of a path
        normalized = posixpath.normpath(posix)
        if normalized != posix:
            errors.append(f"Path not normalized: {file_path} (use {normalized})")

        for forbidden in self.forbidden_paths:
            if posix.startswith(forbidden) or normalized.startswith(forbidden):
                errors.append(f"Forbidden path: {file_path} (matches {forbidden})")

        if not any(normalized.startswith(allowed) for allowed in self.allowed_paths):
            errors.append(f"Path not in allowlist: {file_path}")

        return errors

    def check_path(self, file_path: str) -> str | None:
        """First path error, or None."""
        errors = self.path_errors(file_path)
        return errors[0] if errors else None

    def content_errors(self, file_path: str, content: str) -> list[str]:
        if not content:
            return []
        return [
            f"Dangerous pattern detected in {file_path}: {pattern.pattern}"
            for pattern in self._patterns
            if pattern.search(content)
        ]
