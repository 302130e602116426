"""
Static pattern scanner (instant phase).

Flags risky constructs as soon as they are typed:
- tx.origin, delegatecall, selfdestruct, send, block.timestamp
- Low-level calls whose return value is ignored
- Reentrancy: a low-level call followed by a state write in the same function
"""

import re

from ..common_types import CursorPosition, Finding, Phase, Severity
from .base import SyncProvider
from .rules import CHECKED_CALL_PREFIX, LOW_LEVEL_CALL, RISK_PATTERNS, STATE_WRITE
from .source import iter_functions, line_col, mask_comments_and_strings


class PatternProvider(SyncProvider):
    """Line-level vulnerability alerts."""

    provider_id = "patterns"
    phase = Phase.INSTANT
    description = "Pattern-based vulnerability alerts"

    def analyze(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        masked = mask_comments_and_strings(content)
        findings: list[Finding] = []

        for rule_id, pattern, message, severity_str, category, fix in RISK_PATTERNS:
            severity = Severity[severity_str]
            for match in re.finditer(pattern, masked):
                line, col = line_col(masked, match.start())
                findings.append(Finding(
                    category=category,
                    severity=severity,
                    message=message,
                    line=line,
                    column=col,
                    fix=fix,
                    rule_id=rule_id,
                ))

        findings.extend(self._unchecked_calls(masked))
        findings.extend(self._reentrancy(masked))
        return findings

    def _unchecked_calls(self, masked: str) -> list[Finding]:
        findings = []
        for match in re.finditer(LOW_LEVEL_CALL, masked):
            line_start = masked.rfind("\n", 0, match.start()) + 1
            prefix = masked[line_start:match.start()]
            if re.search(CHECKED_CALL_PREFIX, prefix):
                continue
            line, col = line_col(masked, match.start())
            findings.append(Finding(
                category="security",
                severity=Severity.WARNING,
                message=f"Return value of low-level {match.group(1)}() is not checked",
                line=line,
                column=col,
                fix="Capture (bool success, ) and require(success)",
                rule_id="unchecked-call",
            ))
        return findings

    def _reentrancy(self, masked: str) -> list[Finding]:
        findings = []
        for fn in iter_functions(masked):
            if re.search(r"\bnonReentrant\b", fn.modifiers):
                continue
            body = masked[fn.body_start:fn.body_end]
            call = re.search(r"\.call\s*(\{[^}]*\})?\s*\(", body)
            if call is None:
                continue
            if re.search(STATE_WRITE, body[call.end():]):
                line, col = line_col(masked, fn.body_start + call.start())
                findings.append(Finding(
                    category="security",
                    severity=Severity.ERROR,
                    message=(
                        f"Possible reentrancy in '{fn.name}': state is written "
                        "after an external call"
                    ),
                    line=line,
                    column=col,
                    fix="Apply checks-effects-interactions or a nonReentrant guard",
                    rule_id="reentrancy",
                ))
        return findings
