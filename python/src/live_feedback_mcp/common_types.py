"""
Common types for the feedback engine.

Contains:
- Enums: Severity (ordered), Phase, ChangeKind
- Value types: CursorPosition, Finding, ProviderError
- Results: ProviderResult, PhaseResult
- Events: ChangeEvent, Feedback
- Content hashing helper
"""

import functools
import hashlib
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from .errors import InvalidInput, ProviderFailure, ProviderTimeout


@functools.total_ordering
class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank


_SEVERITY_RANK = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.CRITICAL: 3,
}


class Phase(Enum):
    INSTANT = "instant"
    DEFERRED = "deferred"


class ChangeKind(Enum):
    EDIT = "edit"
    INSERT = "insert"
    DELETE = "delete"


def normalize_content(content: str) -> str:
    """Normalize line endings so identical text hashes identically."""
    return content.replace("\r\n", "\n").replace("\r", "\n")


def content_hash(content: str) -> str:
    """SHA-256 of normalized content."""
    return hashlib.sha256(
        normalize_content(content).encode("utf-8", errors="replace")
    ).hexdigest()


@dataclass(frozen=True)
class CursorPosition:
    """1-based line, 0-based column."""
    line: int
    column: int

    def to_dict(self) -> dict:
        return {"line": self.line, "column": self.column}


@dataclass(frozen=True)
class Finding:
    """A single issue or suggestion reported by a provider."""
    category: str
    severity: Severity
    message: str
    line: int | None = None
    column: int | None = None
    end_line: int | None = None
    end_column: int | None = None
    fix: str = ""
    rule_id: str = ""

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "severity": self.severity.value,
            "message": self.message,
            "line": self.line,
            "column": self.column,
            "end_line": self.end_line,
            "end_column": self.end_column,
            "fix": self.fix,
            "rule_id": self.rule_id,
        }

    def __str__(self) -> str:
        location = f":{self.line}" if self.line else ""
        return f"[{self.severity.value.upper()}]{location} {self.message}"


@dataclass(frozen=True)
class ProviderError:
    """Failure marker attached to a ProviderResult."""
    category: str  # kind of the ProviderFailure that produced it
    message: str

    def to_dict(self) -> dict:
        return {"category": self.category, "message": self.message}


@dataclass(frozen=True)
class ProviderResult:
    """Outcome of one provider invocation within a phase."""
    provider_id: str
    success: bool
    findings: tuple[Finding, ...] = ()
    error: ProviderError | None = None
    from_cache: bool = False
    elapsed_ms: float = 0.0

    @classmethod
    def ok(cls, provider_id: str, findings: list[Finding], elapsed_ms: float = 0.0) -> "ProviderResult":
        return cls(provider_id=provider_id, success=True, findings=tuple(findings), elapsed_ms=elapsed_ms)

    @classmethod
    def failed(
        cls,
        provider_id: str,
        category: str,
        message: str,
        elapsed_ms: float = 0.0,
    ) -> "ProviderResult":
        return cls(
            provider_id=provider_id,
            success=False,
            error=ProviderError(category=category, message=message),
            elapsed_ms=elapsed_ms,
        )

    @classmethod
    def from_error(cls, error: ProviderFailure, elapsed_ms: float = 0.0) -> "ProviderResult":
        """Failure entry categorized by the error's kind."""
        return cls.failed(error.provider_id, error.kind, error.detail, elapsed_ms=elapsed_ms)

    @property
    def timed_out(self) -> bool:
        return self.error is not None and self.error.category == ProviderTimeout.kind

    def to_dict(self, verbose: bool = False) -> dict:
        data: dict[str, Any] = {
            "provider": self.provider_id,
            "success": self.success,
            "findings": [f.to_dict() for f in self.findings],
        }
        if self.error:
            data["error"] = self.error.to_dict()
        if verbose:
            data["from_cache"] = self.from_cache
            data["elapsed_ms"] = round(self.elapsed_ms, 2)
        return data


@dataclass
class PhaseResult:
    """Joined results of every provider that ran in one phase."""
    phase: Phase
    results: dict[str, ProviderResult] = field(default_factory=dict)
    elapsed_ms: float = 0.0

    @property
    def findings(self) -> list[Finding]:
        """Findings from successful providers, most severe first."""
        merged = [
            f
            for result in self.results.values()
            if result.success
            for f in result.findings
        ]
        return sorted(merged, key=lambda f: (-f.severity.rank, f.line or 0))

    @property
    def failed_providers(self) -> list[str]:
        return [pid for pid, r in self.results.items() if not r.success]

    @property
    def is_empty(self) -> bool:
        return not self.results

    def filtered(self, min_severity: Severity) -> "PhaseResult":
        """Copy of this result without findings below min_severity."""
        return PhaseResult(
            phase=self.phase,
            results={
                pid: replace(r, findings=tuple(f for f in r.findings if f.severity >= min_severity))
                for pid, r in self.results.items()
            },
            elapsed_ms=self.elapsed_ms,
        )

    def to_dict(self, verbose: bool = False) -> dict:
        return {
            "phase": self.phase.value,
            "providers": {pid: r.to_dict(verbose) for pid, r in self.results.items()},
            "failed_providers": self.failed_providers,
            "elapsed_ms": round(self.elapsed_ms, 2),
        }


@dataclass(frozen=True)
class ChangeEvent:
    """A snapshot of one file produced by a keystroke-level edit."""
    session_id: str
    file_path: str
    content: str
    cursor: CursorPosition | None = None
    change_kind: ChangeKind = ChangeKind.EDIT
    trigger_character: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.session_id, str) or not self.session_id:
            raise InvalidInput("session_id is required")
        if not isinstance(self.file_path, str) or not self.file_path:
            raise InvalidInput("file_path is required")
        if not isinstance(self.content, str):
            raise InvalidInput("content must be a string")
        if not isinstance(self.change_kind, ChangeKind):
            raise InvalidInput(f"Invalid change kind: {self.change_kind!r}")
        if self.cursor is not None and (self.cursor.line < 1 or self.cursor.column < 0):
            raise InvalidInput("cursor line must be >= 1 and column >= 0")
        if self.trigger_character is not None and (
            not isinstance(self.trigger_character, str) or len(self.trigger_character) != 1
        ):
            raise InvalidInput("trigger_character must be a single character")

    @property
    def content_hash(self) -> str:
        return content_hash(self.content)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChangeEvent":
        """
        Build an event from a transport payload.

        Accepts snake_case or camelCase keys. "changeType" is accepted as an
        alias of change_kind.

        Raises:
            InvalidInput: Missing required fields or malformed values
        """
        if not isinstance(data, dict):
            raise InvalidInput("change event must be an object")

        def pick(*names: str) -> Any:
            for name in names:
                if name in data:
                    return data[name]
            return None

        content = pick("content")
        if content is None:
            raise InvalidInput("content is required")

        cursor = None
        raw_cursor = pick("cursor", "cursor_position", "cursorPosition")
        if raw_cursor is not None:
            try:
                cursor = CursorPosition(line=int(raw_cursor["line"]), column=int(raw_cursor["column"]))
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidInput(f"Invalid cursor position: {raw_cursor!r}") from e

        raw_kind = pick("change_kind", "changeKind", "change_type", "changeType") or "edit"
        try:
            kind = ChangeKind(raw_kind)
        except ValueError as e:
            raise InvalidInput(f"Invalid change kind: {raw_kind!r}") from e

        return cls(
            session_id=pick("session_id", "sessionId") or "",
            file_path=pick("file_path", "filePath") or "",
            content=content,
            cursor=cursor,
            change_kind=kind,
            trigger_character=pick("trigger_character", "triggerCharacter") or None,
        )


def new_feedback_id() -> str:
    return f"fb_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class Feedback:
    """Feedback for one change event; deferred is filled in a second copy."""
    feedback_id: str
    session_id: str
    file_path: str
    instant: PhaseResult
    deferred: PhaseResult | None = None
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_deferred(self, deferred: PhaseResult, **metadata: Any) -> "Feedback":
        return replace(
            self,
            deferred=deferred,
            timestamp=time.time(),
            metadata={**self.metadata, **metadata},
        )

    def to_dict(self, verbose: bool = False) -> dict:
        return {
            "feedback_id": self.feedback_id,
            "session_id": self.session_id,
            "file_path": self.file_path,
            "timestamp": self.timestamp,
            "instant": self.instant.to_dict(verbose),
            "deferred": self.deferred.to_dict(verbose) if self.deferred else None,
            "metadata": dict(self.metadata),
        }
