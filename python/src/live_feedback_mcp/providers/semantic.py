"""
LLM-backed semantic review (deferred phase).

Sends the current snapshot to an OpenAI-compatible endpoint (OpenRouter by
default) and asks for a JSON array of findings. Only registered when an API
key is configured.
"""

import json
import logging
import re
from typing import Any

import tiktoken
from openai import AsyncOpenAI

from ..common_types import CursorPosition, Finding, Phase, Severity
from ..config import EngineConfig
from ..errors import ProviderFailure
from .base import Provider

logger = logging.getLogger(__name__)


REVIEW_PROMPT = """You are reviewing a Solidity source file while it is being edited.
Report only real issues you can point to in the code below: security
vulnerabilities, logic errors and significant gas waste.

Respond with a JSON array only. Each element must have:
  "severity": one of "info", "warning", "error", "critical"
  "category": a short lowercase word such as "security", "logic" or "gas"
  "message": one sentence describing the issue
  "line": the 1-based line number, or null
  "fix": a short suggested fix, or ""

If there are no issues, respond with [].

File: {file_path}
```solidity
{content}
```"""

_SEVERITY_ALIASES = {
    "low": Severity.INFO,
    "medium": Severity.WARNING,
    "high": Severity.ERROR,
}


def parse_findings(text: str) -> list[Finding]:
    """
    Parse a model response into findings.

    Tolerates a surrounding markdown code fence. Unknown severities map to
    warning; elements without a message are skipped.

    Raises:
        ValueError: The response is not a JSON array
    """
    cleaned = text.strip()
    fence = re.match(r"^```(?:json)?\s*(.*?)\s*```$", cleaned, re.DOTALL)
    if fence:
        cleaned = fence.group(1)

    data = json.loads(cleaned)
    if not isinstance(data, list):
        raise ValueError(f"expected a JSON array, got {type(data).__name__}")

    findings = []
    for item in data:
        if not isinstance(item, dict) or not item.get("message"):
            continue
        findings.append(Finding(
            category=str(item.get("category") or "semantic"),
            severity=_parse_severity(item.get("severity")),
            message=str(item["message"]),
            line=item["line"] if isinstance(item.get("line"), int) else None,
            fix=str(item.get("fix") or ""),
            rule_id="llm-review",
        ))
    return findings


def _parse_severity(value: Any) -> Severity:
    name = str(value or "").lower()
    if name in _SEVERITY_ALIASES:
        return _SEVERITY_ALIASES[name]
    try:
        return Severity(name)
    except ValueError:
        return Severity.WARNING


class SemanticProvider(Provider):
    """Deferred review by a language model."""

    provider_id = "semantic"
    phase = Phase.DEFERRED
    description = "LLM-backed semantic review (OpenRouter)"

    def __init__(self, config: EngineConfig, client: AsyncOpenAI | None = None):
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.api_base_url,
        )
        self._encoder: tiktoken.Encoding | None = None

    @property
    def encoder(self) -> tiktoken.Encoding:
        """Lazy-load tiktoken encoder."""
        if self._encoder is None:
            self._encoder = tiktoken.encoding_for_model("gpt-4")
        return self._encoder

    def truncate(self, content: str) -> str:
        """Trim content to the configured input token budget."""
        limit = self.config.llm_max_input_tokens
        # ~4 chars per token; only tokenize when the estimate says we might be over
        if len(content) // 4 <= limit:
            return content
        tokens = self.encoder.encode(content)
        if len(tokens) <= limit:
            return content
        return self.encoder.decode(tokens[:limit])

    async def run(
        self,
        content: str,
        cursor: CursorPosition | None,
        file_path: str,
    ) -> list[Finding]:
        if not content.strip():
            return []

        prompt = REVIEW_PROMPT.format(file_path=file_path, content=self.truncate(content))

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                max_tokens=self.config.llm_max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except Exception as e:
            raise ProviderFailure(self.provider_id, f"{type(e).__name__}: {e}") from e

        text = response.choices[0].message.content if response.choices else ""
        if not text:
            raise ProviderFailure(self.provider_id, "empty response")

        try:
            findings = parse_findings(text)
        except ValueError as e:
            logger.debug(f"[SEMANTIC] Unparseable response for {file_path}: {text[:200]!r}")
            raise ProviderFailure(self.provider_id, f"unparseable response: {e}") from e

        logger.debug(f"[SEMANTIC] {len(findings)} findings for {file_path}")
        return findings
