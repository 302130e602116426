"""
Completion suggester (instant phase).

Derives the completion context from the text before the cursor:
member access, pragma, import, type declaration, declaration keyword,
or a partial keyword/identifier. Suggestions are returned as findings with
category "completion"; the insert text is carried in `fix`.
"""

import re

from ..common_types import ChangeEvent, CursorPosition, Finding, Phase, Severity, content_hash
from .base import SyncProvider
from .rules import (
    ADDRESS_MEMBERS,
    DECLARATION_SNIPPETS,
    IMPORT_SNIPPETS,
    MEMBER_COMPLETIONS,
    PRAGMA_SNIPPETS,
    SOLIDITY_KEYWORDS,
    SOLIDITY_TYPES,
)


MAX_SUGGESTIONS = 20


def extract_context(content: str, cursor: CursorPosition) -> dict:
    """Classify the text before the cursor."""
    lines = content.split("\n")
    current = lines[cursor.line - 1] if cursor.line - 1 < len(lines) else ""
    before = current[:cursor.column]

    context = {"type": "general", "prefix": "", "text_before": before}

    member = re.search(r"(\w+)\.(\w*)$", before)
    if member:
        context.update(type="member_access", object=member.group(1), prefix=member.group(2))
    elif re.search(r"\b(function|modifier|event)\s+$", before):
        context.update(type="declaration", keyword=before.split()[-1])
    elif re.search(r"\bpragma\s+$", before):
        context["type"] = "pragma"
    elif re.search(r"\bimport\s+$", before):
        context["type"] = "import"
    elif re.search(r"\b(uint|int|bool|address|string|bytes)\d*\s+$", before):
        context["type"] = "type_declaration"
    else:
        word = re.search(r"\b(\w+)$", before)
        if word:
            context.update(type="keyword_or_identifier", prefix=word.group(1))

    return context


class CompletionProvider(SyncProvider):
    """Cursor-context completion suggestions for Solidity."""

    provider_id = "completion"
    phase = Phase.INSTANT
    description = "Cursor-context completion suggestions"
    requires_cursor = True

    def cache_key(self, event: ChangeEvent) -> str:
        # Suggestions depend on where the cursor is, not just the text
        cursor = f"{event.cursor.line}:{event.cursor.column}" if event.cursor else "-"
        return content_hash(f"{cursor}|{event.trigger_character or ''}|{event.content}")

    def analyze(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        if cursor is None:
            return []

        context = extract_context(content, cursor)
        kind = context["type"]
        prefix = context.get("prefix", "")

        if kind == "member_access":
            items = self._member_items(context["object"], content)
            items = [(label, detail, "member") for label, detail in items if label.startswith(prefix)]
        elif kind == "declaration":
            items = [(s, d, "snippet") for s, d in DECLARATION_SNIPPETS.get(context["keyword"], [])]
        elif kind == "pragma":
            items = [(s, d, "snippet") for s, d in PRAGMA_SNIPPETS]
        elif kind == "import":
            items = [(s, d, "snippet") for s, d in IMPORT_SNIPPETS]
        elif kind == "type_declaration":
            items = [
                (kw, f"Solidity {kw}", "keyword")
                for kw in ("public", "private", "internal", "constant", "immutable", "memory", "storage", "calldata")
            ]
        elif kind == "keyword_or_identifier":
            items = self._prefix_items(content, prefix)
        else:
            items = [(kw, f"Solidity {kw}", "keyword") for kw in SOLIDITY_KEYWORDS[:10]]

        return [
            Finding(
                category="completion",
                severity=Severity.INFO,
                message=label,
                line=cursor.line,
                column=cursor.column,
                fix=label[len(prefix):] if label.startswith(prefix) else label,
                rule_id=item_kind,
            )
            for label, detail, item_kind in items[:MAX_SUGGESTIONS]
        ]

    def _member_items(self, obj: str, content: str) -> list[tuple[str, str]]:
        if obj in MEMBER_COMPLETIONS:
            return MEMBER_COMPLETIONS[obj]
        if re.search(rf"\baddress(\s+payable)?\s+(public\s+|private\s+|internal\s+)?{re.escape(obj)}\b", content):
            return ADDRESS_MEMBERS
        return []

    def _prefix_items(self, content: str, prefix: str) -> list[tuple[str, str, str]]:
        items = []
        seen = {prefix}

        for word in SOLIDITY_KEYWORDS + SOLIDITY_TYPES:
            if word.startswith(prefix) and word not in seen:
                seen.add(word)
                kind = "type" if word in SOLIDITY_TYPES else "keyword"
                items.append((word, f"Solidity {word}", kind))

        for identifier in re.findall(r"\b[A-Za-z_]\w*\b", content):
            if identifier.startswith(prefix) and identifier not in seen:
                seen.add(identifier)
                items.append((identifier, "identifier in file", "identifier"))

        return items
