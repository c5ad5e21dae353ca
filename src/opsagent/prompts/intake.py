"""Intake routing prompt plus the keyword heuristics used as a fallback."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

from opsagent.prompts.base import PromptPair, iso_utc, pretty_json


@dataclass(frozen=True)
class IntentCategory:
    keywords: tuple[str, ...]
    default_pipeline: str | None
    default_urgency: int


INTENT_CATEGORIES: dict[str, IntentCategory] = {
    "SALES_INQUIRY": IntentCategory(
        (
            "pricing", "price", "cost", "demo", "trial", "buy", "purchase", "subscribe",
            "plan", "enterprise", "discount", "quote", "proposal", "interested in",
            "learn more", "features", "comparison", "alternative",
        ),
        "sales-inquiries",
        3,
    ),
    "SUPPORT_REQUEST": IntentCategory(
        (
            "help", "issue", "problem", "error", "bug", "not working", "doesn't work",
            "broken", "crash", "fix", "troubleshoot", "support", "assistance", "stuck",
            "confused", "how to", "unable to", "can't", "failing",
        ),
        "support-requests",
        3,
    ),
    "BILLING_QUESTION": IntentCategory(
        (
            "invoice", "bill", "billing", "payment", "charge", "refund", "cancel",
            "subscription", "upgrade", "downgrade", "receipt", "credit", "transaction",
            "overcharge", "dispute", "renewal",
        ),
        "billing-questions",
        2,
    ),
    "PARTNERSHIP": IntentCategory(
        (
            "partner", "partnership", "collaborate", "collaboration", "integrate",
            "integration", "reseller", "affiliate", "white-label", "api", "sdk",
            "co-marketing", "joint venture", "alliance",
        ),
        "partnerships",
        2,
    ),
    "GENERAL": IntentCategory(
        ("question", "inquiry", "information", "general", "other"),
        "general-intake",
        2,
    ),
    "SPAM": IntentCategory(
        (
            "unsubscribe", "click here", "limited time", "act now", "free money",
            "lottery", "winner", "congratulations", "viagra", "casino",
            "bitcoin opportunity", "make money fast",
        ),
        None,
        1,
    ),
}


@dataclass(frozen=True)
class UrgencyBand:
    level: int
    keywords: tuple[str, ...]
    response_time: str


URGENCY_KEYWORDS: dict[str, UrgencyBand] = {
    "critical": UrgencyBand(
        5,
        (
            "emergency", "critical", "down", "outage", "production issue", "security breach",
            "data loss", "urgent asap", "immediately", "crisis",
        ),
        "15 minutes",
    ),
    "high": UrgencyBand(
        4,
        (
            "urgent", "asap", "important", "deadline", "blocking", "escalate", "priority",
            "time-sensitive", "as soon as possible",
        ),
        "2 hours",
    ),
    "medium": UrgencyBand(
        3, ("soon", "this week", "need help", "waiting", "follow up", "reminder"), "24 hours"
    ),
    "low": UrgencyBand(
        2,
        ("when possible", "no rush", "whenever", "low priority", "fyi", "just wondering"),
        "48-72 hours",
    ),
    "minimal": UrgencyBand(
        1, ("newsletter", "update", "announcement", "information only"), "N/A"
    ),
}


class UrgencyDetection(NamedTuple):
    level: int
    matched_keywords: list[str]


class IntentMatch(NamedTuple):
    category: str
    confidence: float
    matched_keywords: list[str]


class IntakeRequest(BaseModel):
    source: Literal["FORM", "EMAIL", "CHAT", "API"]
    subject: str | None = None
    body: str
    sender_email: str | None = None
    sender_name: str | None = None
    additional_fields: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class IntakeClassification(BaseModel):
    """Parsed shape of a routing response; unknown keys are kept."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    classification: dict[str, Any]
    urgency: dict[str, Any]
    extraction: dict[str, Any] = Field(default_factory=dict)
    routing: dict[str, Any]
    flags: dict[str, Any] = Field(default_factory=dict)
    suggested_title: str | None = Field(default=None, alias="suggestedTitle")
    suggested_description: str | None = Field(default=None, alias="suggestedDescription")


def _category_lines() -> str:
    return "\n".join(
        f"- **{name}** (pipeline: {category.default_pipeline or 'none'}): "
        f"{', '.join(category.keywords[:6])}"
        for name, category in INTENT_CATEGORIES.items()
    )


def _urgency_lines() -> str:
    return "\n".join(
        f"- **{band.level} ({name})**: respond within {band.response_time}; "
        f"signals: {', '.join(band.keywords[:4])}"
        for name, band in URGENCY_KEYWORDS.items()
    )


INTAKE_ROUTING_SYSTEM_PROMPT = f"""You are an intake routing specialist for the OpsAgent platform. Your task is to analyze incoming requests and determine the optimal routing, priority, and handling.

## Your Tasks

### 1. Classify Intent
Determine the primary category of this request:
{_category_lines()}

### 2. Assess Urgency (1-5 scale)
{_urgency_lines()}

### 3. Extract Key Information
Contact details, company, the specific product or service mentioned, any deadline, and budget signals.

### 4. Determine Routing
Pick the target pipeline and, when one is obvious, the team member best suited to handle it.

## Response Format

Respond with valid JSON:

```json
{{
  "classification": {{"category": "{'|'.join(INTENT_CATEGORIES)}", "confidence": 0.0, "reasoning": "string"}},
  "urgency": {{"level": 3, "reasoning": "string", "responseTime": "string"}},
  "extraction": {{"contactName": "string | null", "company": "string | null", "product": "string | null", "deadline": "string | null"}},
  "routing": {{"pipelineId": "string | null", "assigneeId": "string | null", "reasoning": "string"}},
  "flags": {{"isSpam": false, "requiresHumanReview": false, "isDuplicate": false}},
  "suggestedTitle": "string",
  "suggestedDescription": "string"
}}
```

## Important Rules

1. Never route spam to a pipeline; set flags.isSpam and leave pipelineId null
2. When confidence is below 0.5, set flags.requiresHumanReview to true
3. Prefer the category's default pipeline unless the content clearly belongs elsewhere"""


def build_intake_routing_prompts(intake: IntakeRequest) -> PromptPair:
    lines = [
        "## Request Details",
        f"- Source: {intake.source}",
        f"- Received: {iso_utc(intake.timestamp)}",
        f"- Sender: {intake.sender_name or 'Unknown'}",
    ]
    if intake.sender_email:
        lines.append(f"- Email: {intake.sender_email}")
    if intake.subject:
        lines.append(f"- Subject: {intake.subject}")
    lines.extend(["", "## Content", intake.body])
    if intake.additional_fields:
        lines.extend(["", "## Additional Fields", pretty_json(intake.additional_fields)])
    return PromptPair(system=INTAKE_ROUTING_SYSTEM_PROMPT, user="\n".join(lines))


def build_intake_routing_prompt(intake: IntakeRequest) -> str:
    return build_intake_routing_prompts(intake).combined()


def detect_urgency_level(text: str) -> UrgencyDetection:
    """Highest matching urgency level (1 when nothing matches) and the keywords that hit."""
    normalized = text.lower()
    level = 1
    matched: list[str] = []
    for band in URGENCY_KEYWORDS.values():
        for keyword in band.keywords:
            if keyword in normalized:
                level = max(level, band.level)
                if keyword not in matched:
                    matched.append(keyword)
    return UrgencyDetection(level, matched)


def detect_intent_category(text: str) -> list[IntentMatch]:
    normalized = text.lower()
    results = []
    for name, category in INTENT_CATEGORIES.items():
        matched = [keyword for keyword in category.keywords if keyword in normalized]
        if matched:
            confidence = round(min(0.5 + 0.1 * len(matched), 0.95), 2)
            results.append(IntentMatch(name, confidence, matched))
    results.sort(key=lambda match: match.confidence, reverse=True)
    return results
