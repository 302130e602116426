"""Quick contextual hints (instant phase)."""

import re

from ..common_types import CursorPosition, Finding, Phase, Severity
from .base import SyncProvider
from .rules import ARRAY_LENGTH_LOOP
from .source import FUNCTION_HEADER, has_natspec, line_col, mask_comments_and_strings


class HintsProvider(SyncProvider):
    provider_id = "hints"
    phase = Phase.INSTANT
    description = "Quick security, gas and documentation hints"

    def analyze(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        masked = mask_comments_and_strings(content)
        lines = content.split("\n")
        hints: list[Finding] = []

        call = re.search(r"\.call\s*(\{[^}]*\})?\s*\(", masked)
        if call and not re.search(r"\bnonReentrant\b", masked):
            hints.append(Finding(
                category="security",
                severity=Severity.WARNING,
                message="Consider using ReentrancyGuard for external calls",
                line=line_col(masked, call.start())[0],
                rule_id="hint-reentrancy-guard",
            ))

        origin = re.search(r"\btx\.origin\b", masked)
        if origin:
            hints.append(Finding(
                category="security",
                severity=Severity.WARNING,
                message="Avoid using tx.origin, use msg.sender instead",
                line=line_col(masked, origin.start())[0],
                rule_id="hint-tx-origin",
            ))

        for loop in re.finditer(ARRAY_LENGTH_LOOP, masked):
            hints.append(Finding(
                category="gas",
                severity=Severity.INFO,
                message="Cache array length outside the loop to save gas",
                line=line_col(masked, loop.start())[0],
                rule_id="hint-cache-length",
            ))

        for fn in FUNCTION_HEADER.finditer(masked):
            line = line_col(masked, fn.start())[0]
            if not has_natspec(lines, line):
                hints.append(Finding(
                    category="documentation",
                    severity=Severity.INFO,
                    message=f"Consider adding NatSpec documentation to '{fn.group(1)}'",
                    line=line,
                    fix="Add @notice, @param and @return tags",
                    rule_id="hint-natspec",
                ))

        return hints
