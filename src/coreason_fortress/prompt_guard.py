# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""
Prompt-injection scanner.

Every pattern is tested against the text; the verdict is the highest
severity among all matches. Matches are audited with the pattern names and a
PII-redacted preview of the first 200 characters, never the full text.
"""

import re
from typing import List, NamedTuple, Optional, Pattern

from coreason_fortress.audit import AuditLogger, get_audit_logger
from coreason_fortress.models import GuardAction, PromptGuardResult
from coreason_fortress.pii_detector import redact_pii

PREVIEW_LENGTH = 200


class InjectionPattern(NamedTuple):
    name: str
    pattern: Pattern[str]
    severity: GuardAction


def _p(name: str, regex: str, severity: GuardAction) -> InjectionPattern:
    return InjectionPattern(name, re.compile(regex, re.IGNORECASE), severity)


# Ordered; matched names are reported in this order.
INJECTION_PATTERNS: List[InjectionPattern] = [
    # System prompt extraction
    _p(
        "system_prompt_extract",
        r"(?:ignore|forget|disregard)\s+(?:all\s+)?(?:previous|prior|above|system)\s+(?:instructions?|prompts?|rules?)",
        GuardAction.SUSPEND,
    ),
    _p(
        "reveal_instructions",
        r"(?:reveal|show|display|print|output|repeat)\s+(?:your|the|system)\s+"
        r"(?:instructions?|prompts?|rules?|guidelines?)",
        GuardAction.BLOCK,
    ),
    # Role manipulation
    _p("role_override", r"you\s+are\s+(?:now|no\s+longer)\s+", GuardAction.BLOCK),
    _p("jailbreak_dan", r"\b(?:DAN|do\s+anything\s+now|STAN|DUDE|developer\s+mode)\b", GuardAction.SUSPEND),
    # Fake system blocks
    _p(
        "delimiter_injection",
        r"(?:```system|<\|system\|>|<\|im_start\|>|\[SYSTEM\]|###\s*System)",
        GuardAction.SUSPEND,
    ),
    _p(
        "output_format_hijack",
        r"(?:respond\s+only\s+with|your\s+(?:first|only)\s+word\s+(?:must|should)\s+be)",
        GuardAction.WARN,
    ),
    _p(
        "data_exfil",
        r"(?:encode|convert|translate)\s+(?:the\s+)?(?:system|instructions?|prompt)\s+(?:to|into|as)\s+"
        r"(?:base64|hex|binary|rot13)",
        GuardAction.SUSPEND,
    ),
    # Payloads
    _p("code_injection", r"(?:eval|exec|import|require|__proto__|constructor\s*\[)", GuardAction.BLOCK),
    _p("sql_injection", r"(?:;\s*DROP\s|UNION\s+SELECT|OR\s+1\s*=\s*1|'\s*OR\s*')", GuardAction.BLOCK),
    _p("xss_injection", r"<script[\s>]|javascript:|on(?:load|error|click)\s*=", GuardAction.BLOCK),
    _p(
        "recursive_prompt",
        r"(?:repeat\s+this\s+(?:message|prompt)\s+(?:\d+|forever|infinitely))",
        GuardAction.BLOCK,
    ),
    _p("token_smuggling", r"(?:ignore\s+safety|bypass\s+(?:filter|content|safety))", GuardAction.SUSPEND),
    # Image links can exfiltrate via the URL when rendered
    _p("markdown_exploit", r"!\[(?:.*?)\]\((?:https?|ftp|data)://(?:.*?)\)", GuardAction.WARN),
]


def scan_prompt(text: str, audit_logger: Optional[AuditLogger] = None) -> PromptGuardResult:
    """
    Scans input text against every injection pattern.

    Args:
        text: The raw inbound message.
        audit_logger: Where to record matches. Defaults to the process logger.

    Returns:
        PromptGuardResult with all matched names and the maximum action.
    """
    matches: List[str] = []
    action = GuardAction.ALLOW

    for name, pattern, severity in INJECTION_PATTERNS:
        if pattern.search(text):
            matches.append(name)
            if severity.rank > action.rank:
                action = severity

    if matches:
        audit_log = audit_logger or get_audit_logger()
        details = {"patterns": matches, "severity": action.value, "preview": redact_pii(text[:PREVIEW_LENGTH])}
        if action in (GuardAction.BLOCK, GuardAction.SUSPEND):
            audit_log.critical("prompt_injection_detected", details=details)
        else:
            audit_log.warn("prompt_injection_warning", details=details)

    return PromptGuardResult(safe=not matches, patterns=matches, action=action)
