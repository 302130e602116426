"""
Rule-based syntax checker (instant phase).

Checks:
- Balanced braces, parentheses and brackets
- Presence and form of the pragma directive
- Deprecated constructs (throw, suicide, sha3, var)
- Functions missing a visibility specifier
"""

import re

from ..common_types import CursorPosition, Finding, Phase, Severity
from .base import SyncProvider
from .rules import DEPRECATED_CONSTRUCTS, PRAGMA_VERSION, VISIBILITY_KEYWORDS
from .source import FUNCTION_HEADER, line_col, mask_comments_and_strings


_PAIRS = {")": "(", "}": "{", "]": "["}
_NAMES = {"(": "parenthesis", "{": "brace", "[": "bracket"}


class SyntaxProvider(SyncProvider):
    """Fast structural validation of Solidity source."""

    provider_id = "syntax"
    phase = Phase.INSTANT
    description = "Bracket balance, pragma, deprecated constructs, visibility"

    def analyze(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        if not content.strip():
            return []

        masked = mask_comments_and_strings(content)
        findings: list[Finding] = []
        findings.extend(self._check_balance(masked))
        findings.extend(self._check_pragma(content, masked, file_path))
        findings.extend(self._check_deprecated(masked))
        findings.extend(self._check_visibility(masked))
        return findings

    def _check_balance(self, masked: str) -> list[Finding]:
        findings = []
        stack: list[tuple[str, int]] = []

        for offset, ch in enumerate(masked):
            if ch in "({[":
                stack.append((ch, offset))
            elif ch in ")}]":
                if stack and stack[-1][0] == _PAIRS[ch]:
                    stack.pop()
                    continue
                line, col = line_col(masked, offset)
                findings.append(Finding(
                    category="syntax",
                    severity=Severity.ERROR,
                    message=f"Unexpected closing {_NAMES[_PAIRS[ch]]} '{ch}'",
                    line=line,
                    column=col,
                    rule_id="unmatched-close",
                ))

        for ch, offset in stack:
            line, col = line_col(masked, offset)
            findings.append(Finding(
                category="syntax",
                severity=Severity.ERROR,
                message=f"Unclosed {_NAMES[ch]} '{ch}'",
                line=line,
                column=col,
                rule_id="unclosed-open",
            ))

        return findings

    def _check_pragma(self, content: str, masked: str, file_path: str) -> list[Finding]:
        if file_path and not file_path.endswith(".sol"):
            return []

        match = re.search(r"\bpragma\s+solidity\b([^;\n]*)(;?)", masked)
        if match is None:
            return [Finding(
                category="syntax",
                severity=Severity.WARNING,
                message="Missing pragma solidity directive",
                line=1,
                column=0,
                fix="Add 'pragma solidity ^0.8.20;' at the top of the file",
                rule_id="missing-pragma",
            )]

        line, col = line_col(masked, match.start())
        findings = []
        if not match.group(2):
            findings.append(Finding(
                category="syntax",
                severity=Severity.ERROR,
                message="Pragma directive is missing a terminating semicolon",
                line=line,
                column=col,
                rule_id="pragma-semicolon",
            ))

        version = content[match.start(1):match.end(1)]
        if not re.match(PRAGMA_VERSION, version):
            findings.append(Finding(
                category="syntax",
                severity=Severity.ERROR,
                message=f"Invalid pragma version expression: {version.strip() or '(empty)'}",
                line=line,
                column=col,
                fix="Use a version range such as ^0.8.20",
                rule_id="invalid-pragma",
            ))
        return findings

    def _check_deprecated(self, masked: str) -> list[Finding]:
        findings = []
        for rule_id, pattern, message in DEPRECATED_CONSTRUCTS:
            for match in re.finditer(pattern, masked):
                line, col = line_col(masked, match.start())
                findings.append(Finding(
                    category="deprecated",
                    severity=Severity.WARNING,
                    message=message,
                    line=line,
                    column=col,
                    rule_id=rule_id,
                ))
        return findings

    def _check_visibility(self, masked: str) -> list[Finding]:
        findings = []
        for match in FUNCTION_HEADER.finditer(masked):
            modifiers = match.group(3)
            if any(re.search(rf"\b{kw}\b", modifiers) for kw in VISIBILITY_KEYWORDS):
                continue
            line, col = line_col(masked, match.start())
            findings.append(Finding(
                category="visibility",
                severity=Severity.WARNING,
                message=f"Function '{match.group(1)}' is missing a visibility specifier",
                line=line,
                column=col,
                fix="Declare the function public, external, internal or private",
                rule_id="missing-visibility",
            ))
        return findings
