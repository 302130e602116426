"""
Smart suggestions (deferred phase).

Whole-file review that runs once typing pauses:
- Reentrancy guard and unchecked value transfers
- Gas: array length loops, storage pointers, unchecked increments
- Access control on state-changing entry points
- Missing NatSpec and design pattern suggestions
"""

import re

from ..common_types import CursorPosition, Finding, Phase, Severity
from .base import SyncProvider
from .rules import ARRAY_LENGTH_LOOP, STATE_WRITE
from .source import iter_functions, has_natspec, line_col, mask_comments_and_strings


_ACCESS_GUARDS = r"\b(onlyOwner|onlyRole|onlyAdmin|whenNotPaused)\b"
_SENDER_CHECK = r"\brequire\s*\(\s*msg\.sender\s*=="


class SecurityProvider(SyncProvider):
    """Deferred security, gas and design suggestions."""

    provider_id = "security"
    phase = Phase.DEFERRED
    description = "Smart suggestions: reentrancy, access control, gas, NatSpec, patterns"

    def analyze(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        masked = mask_comments_and_strings(content)
        lines = content.split("\n")
        findings: list[Finding] = []

        guarded = bool(re.search(r"\bnonReentrant\b", masked))
        reentrant_fn = None

        for fn in iter_functions(masked):
            body = masked[fn.body_start:fn.body_end]
            line = line_col(masked, fn.header_start)[0]

            call = re.search(r"\.call\s*(\{[^}]*\})?\s*\(", body)
            if call and not re.search(r"\bnonReentrant\b", fn.modifiers):
                reentrant_fn = fn.name
                findings.append(Finding(
                    category="security",
                    severity=Severity.ERROR,
                    message=f"External call in '{fn.name}' is not protected against reentrancy",
                    line=line_col(masked, fn.body_start + call.start())[0],
                    fix="Inherit ReentrancyGuard and add the nonReentrant modifier",
                    rule_id="reentrancy-guard",
                ))

            for transfer in re.finditer(r"\.(call|send)\s*(\{[^}]*\})?\s*\(", body):
                statement_start = max(body.rfind(";", 0, transfer.start()), body.rfind("{", 0, transfer.start())) + 1
                statement = body[statement_start:transfer.start()]
                if re.search(r"(\bbool\b|\brequire\s*\(|\bif\s*\(|=)", statement):
                    continue
                findings.append(Finding(
                    category="security",
                    severity=Severity.WARNING,
                    message=f"Result of .{transfer.group(1)}() in '{fn.name}' is ignored",
                    line=line_col(masked, fn.body_start + transfer.start())[0],
                    fix="Check the returned bool or use Address.sendValue",
                    rule_id="unchecked-transfer",
                ))

            if self._needs_access_control(fn.modifiers, body):
                findings.append(Finding(
                    category="security",
                    severity=Severity.WARNING,
                    message=f"'{fn.name}' changes state and is callable by anyone",
                    line=line,
                    fix="Restrict it with onlyOwner or an explicit msg.sender check",
                    rule_id="access-control",
                ))

            if not has_natspec(lines, line):
                findings.append(Finding(
                    category="documentation",
                    severity=Severity.INFO,
                    message=f"Function '{fn.name}' has no NatSpec documentation",
                    line=line,
                    fix="Document it with /// @notice, @param and @return",
                    rule_id="natspec",
                ))

        for loop in re.finditer(ARRAY_LENGTH_LOOP, masked):
            findings.append(Finding(
                category="gas",
                severity=Severity.INFO,
                message="Loop reads .length on every iteration",
                line=line_col(masked, loop.start())[0],
                fix="Cache the array length in a local variable (3-5 gas per iteration)",
                rule_id="gas-loop-length",
            ))

        storage = re.search(r"\b\w+\s+storage\s+\w+\s*=", masked)
        if storage:
            findings.append(Finding(
                category="gas",
                severity=Severity.INFO,
                message="Storage pointer used for a local variable",
                line=line_col(masked, storage.start())[0],
                fix="Use memory for temporary copies that are only read (200-2000 gas)",
                rule_id="gas-storage-pointer",
            ))

        increment = re.search(r"\bfor\s*\([^)]*(\+\+\w+|\w+\+\+)\s*\)", masked)
        if increment and not re.search(r"\bunchecked\s*\{", masked):
            findings.append(Finding(
                category="gas",
                severity=Severity.INFO,
                message="Loop counter increment is overflow-checked",
                line=line_col(masked, increment.start())[0],
                fix="Increment the counter inside an unchecked block (20-40 gas)",
                rule_id="gas-unchecked-increment",
            ))

        if reentrant_fn and not guarded:
            findings.append(Finding(
                category="pattern",
                severity=Severity.INFO,
                message="Consider the ReentrancyGuard pattern for contracts making external calls",
                fix='import "@openzeppelin/contracts/utils/ReentrancyGuard.sol";',
                rule_id="pattern-reentrancy-guard",
            ))

        if re.search(r"\bmapping\s*\(", masked) and re.search(r"\bstruct\s+\w+", masked):
            findings.append(Finding(
                category="pattern",
                severity=Severity.INFO,
                message="Consider a factory contract for creating and tracking multiple instances",
                rule_id="pattern-factory",
            ))

        return findings

    def _needs_access_control(self, modifiers: str, body: str) -> bool:
        if not re.search(r"\b(public|external)\b", modifiers):
            return False
        if re.search(r"\b(view|pure)\b", modifiers):
            return False
        if re.search(_ACCESS_GUARDS, modifiers) or re.search(_SENDER_CHECK, body):
            return False
        # Writes keyed by msg.sender only touch the caller's own slot
        writes = [m.group(0) for m in re.finditer(STATE_WRITE, body)]
        sensitive = re.search(r"\b(owner|admin|paused)\s*=(?!=)", body) or re.search(r"\bselfdestruct\s*\(", body)
        return bool(sensitive) or any("msg.sender" not in w for w in writes)
