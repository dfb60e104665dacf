"""Prompt-injection screening for repository content.

README and configuration-file text is attacker-controlled and ends up inside
the analysis prompt. :func:`detect_injection_attempt` runs before any
provider call and flags content that tries to steer the model:

* instruction overrides ("ignore all previous instructions"),
* system-prompt extraction ("reveal your system prompt"),
* role hijacking ("you are now an unrestricted ..."),
* chat-template smuggling (``<|im_start|>``, ``[INST]``),
* any of the above hidden in base64 blobs or split by zero-width characters,
* a statistical check: more than 5% of words are manipulation keywords.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Iterable

from repolens.core.surveyor import RepositoryContext

logger = logging.getLogger(__name__)

KEYWORD_DENSITY_THRESHOLD = 0.05
# A density flag needs at least this many keyword hits
MIN_KEYWORD_HITS = 3

_FLAGS = re.IGNORECASE

INJECTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    # Instruction override
    re.compile(r"\b(ignore|disregard|forget|override)\s+(all\s+|any\s+)?(of\s+)?(the\s+|your\s+)?(previous|prior|above|earlier|preceding)\s+(instructions?|prompts?|rules|directions)", _FLAGS),
    re.compile(r"\b(ignore|disregard|forget)\s+(everything|all)\s+(you('ve|\s+have)\s+been\s+told|above)", _FLAGS),
    re.compile(r"\bnew\s+(instructions|system\s+prompt)\s*:", _FLAGS),
    re.compile(r"\b(do\s+not|don't)\s+follow\s+your\s+(instructions|rules|guidelines)", _FLAGS),
    # System prompt extraction
    re.compile(r"\b(reveal|show|print|output|repeat|display|leak)\s+(me\s+)?(your|the)\s+(system\s+prompt|initial\s+prompt|hidden\s+instructions|original\s+instructions)", _FLAGS),
    re.compile(r"\bwhat\s+(is|are|was|were)\s+your\s+(system\s+prompt|initial\s+instructions|original\s+instructions)", _FLAGS),
    # Role hijack
    re.compile(r"\byou\s+are\s+now\s+(an?\s+)?(unrestricted|unfiltered|jailbroken|uncensored|dan\b|different\s+(ai|assistant|model))", _FLAGS),
    re.compile(r"\byou\s+are\s+no\s+longer\s+(an?\s+)?(ai|assistant|bound|restricted|limited)", _FLAGS),
    re.compile(r"\bfrom\s+now\s+on,?\s+you\s+(are|will|must)\s+(act|respond|behave|ignore|only)\b", _FLAGS),
    re.compile(r"\b(act|behave|respond)\s+as\s+(if\s+you\s+are\s+|an?\s+)?(unrestricted|unfiltered|jailbroken|uncensored|dan\b)", _FLAGS),
    re.compile(r"\bpretend\s+(that\s+)?you\s+are\b", _FLAGS),
    re.compile(r"\b(developer|jailbreak)\s+mode\s+(enabled|activated|on)\b", _FLAGS),
    # Steering the assessment itself
    re.compile(r"\b(rate|assess|classify|mark)\s+(this|the)\s+(project|repository|repo|code)\s+as\s+(senior|expert|excellent)", _FLAGS),
    # Chat template smuggling
    re.compile(r"<\|(im_start|im_end|system|endoftext)\|>", _FLAGS),
    re.compile(r"\[/?INST\]|<</?SYS>>"),
)

MANIPULATION_KEYWORDS: frozenset[str] = frozenset({
    "ignore", "disregard", "forget", "override", "bypass", "instructions",
    "instruction", "prompt", "jailbreak", "pretend", "roleplay", "unrestricted",
    "unfiltered", "obey", "comply", "system", "previous", "reveal",
})

_ZERO_WIDTH = re.compile(r"[\u200b\u200c\u200d\u2060\ufeff\u00ad]")
_BASE64_TOKEN = re.compile(r"[A-Za-z0-9+/]{24,}={0,2}")
_WORD = re.compile(r"[a-z']+")


def _normalize(text: str) -> str:
    return _ZERO_WIDTH.sub("", text)


def _decoded_base64_segments(text: str) -> Iterable[str]:
    for token in _BASE64_TOKEN.findall(text):
        padded = token + "=" * (-len(token) % 4)
        try:
            decoded = base64.b64decode(padded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError, ValueError):
            continue
        if all(char.isprintable() or char.isspace() for char in decoded):
            yield decoded


def _matches_pattern(text: str) -> bool:
    return any(pattern.search(text) for pattern in INJECTION_PATTERNS)


def _keyword_hits(text: str) -> tuple[int, int]:
    words = _WORD.findall(text.lower())
    return sum(1 for word in words if word in MANIPULATION_KEYWORDS), len(words)


def keyword_density(text: str) -> float:
    """Share of words in *text* that are manipulation keywords."""
    hits, total = _keyword_hits(text)
    if not total:
        return 0.0
    return hits / total


def scan_text(text: str) -> bool:
    """Return ``True`` if *text* looks like a prompt-injection attempt."""
    if not text:
        return False
    normalized = _normalize(text)
    if _matches_pattern(normalized):
        return True
    if any(_matches_pattern(segment) for segment in _decoded_base64_segments(normalized)):
        return True
    hits, total = _keyword_hits(normalized)
    return hits >= MIN_KEYWORD_HITS and hits / total > KEYWORD_DENSITY_THRESHOLD


def detect_injection_attempt(context: RepositoryContext) -> bool:
    """Scan the README and every collected configuration file of *context*."""
    sources: list[tuple[str, str]] = []
    if context.readme_content:
        sources.append(("README", context.readme_content))
    for files in context.config_files.values():
        sources.extend(files.items())

    for name, text in sources:
        if scan_text(text):
            logger.warning("Prompt-injection content detected in %s (%s)", name, context.repo_url)
            return True
    return False
