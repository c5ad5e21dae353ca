"""Notification routing prompt and side-effect-free classification helpers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, Field

from opsagent.prompts.base import PromptPair, iso_utc, pretty_json


class UrgencyLevel(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class Channel(str, Enum):
    IN_APP = "IN_APP"
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


@dataclass(frozen=True)
class EventTypeConfig:
    code: str
    description: str
    default_urgency: UrgencyLevel
    default_channels: tuple[Channel, ...]
    notify_roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class UrgencyConfig:
    level: UrgencyLevel
    priority: int
    delivery_timing: str
    max_delay_seconds: int
    channels: tuple[Channel, ...]
    retry_count: int
    escalate_after_seconds: int | None
    description: str


@dataclass(frozen=True)
class ChannelConfig:
    code: Channel
    name: str
    supports_rich_content: bool
    supports_actions: bool
    cost_per_message: float
    fallback_channel: Channel | None
    max_length: int | None = None


@dataclass(frozen=True)
class RoleRouting:
    role: str
    notify_for: tuple[str, ...]
    preferred_channels: tuple[Channel, ...]
    quiet_hours: bool


_IN_APP = (Channel.IN_APP,)
_IN_APP_EMAIL = (Channel.IN_APP, Channel.EMAIL)


def _event(code: str, description: str, urgency: UrgencyLevel, channels: tuple[Channel, ...], roles: tuple[str, ...] = ()) -> EventTypeConfig:
    return EventTypeConfig(code, description, urgency, channels, roles)


NOTIFICATION_EVENT_TYPES: dict[str, EventTypeConfig] = {
    config.code: config
    for config in (
        _event("INTAKE_CREATED", "New intake request created", UrgencyLevel.MEDIUM, _IN_APP_EMAIL, ("ADMIN", "OPERATOR")),
        _event("INTAKE_ASSIGNED", "Intake assigned to team member", UrgencyLevel.MEDIUM, _IN_APP),
        _event("INTAKE_ESCALATED", "Intake escalated due to urgency or time", UrgencyLevel.HIGH, _IN_APP_EMAIL, ("ADMIN", "OPERATOR")),
        _event("PIPELINE_STAGE_CHANGED", "Item moved to different stage", UrgencyLevel.LOW, _IN_APP),
        _event("PIPELINE_ITEM_OVERDUE", "Pipeline item past due date", UrgencyLevel.HIGH, _IN_APP_EMAIL, ("PM",)),
        _event("PIPELINE_ITEM_COMPLETED", "Pipeline item marked complete", UrgencyLevel.LOW, _IN_APP),
        _event("EVENT_REMINDER", "Upcoming event reminder", UrgencyLevel.MEDIUM, _IN_APP_EMAIL),
        _event("EVENT_CANCELLED", "Calendar event cancelled", UrgencyLevel.HIGH, _IN_APP_EMAIL),
        _event("EVENT_RESCHEDULED", "Calendar event time changed", UrgencyLevel.HIGH, _IN_APP_EMAIL),
        _event("SYSTEM_ALERT", "System-level alert or warning", UrgencyLevel.CRITICAL, (Channel.IN_APP, Channel.EMAIL, Channel.SMS), ("ADMIN",)),
        _event("AUTOMATION_FAILED", "Workflow or automation failed", UrgencyLevel.HIGH, _IN_APP_EMAIL, ("ADMIN", "OPERATOR")),
        _event("AUTOMATION_COMPLETED", "Automation workflow completed", UrgencyLevel.LOW, _IN_APP),
        _event("USER_MENTIONED", "User was @mentioned in comment", UrgencyLevel.MEDIUM, _IN_APP_EMAIL),
        _event("TASK_ASSIGNED", "Task assigned to user", UrgencyLevel.MEDIUM, _IN_APP),
        _event("APPROVAL_REQUESTED", "Agent decision requires approval", UrgencyLevel.HIGH, _IN_APP_EMAIL, ("ADMIN",)),
        _event("APPROVAL_GRANTED", "Pending action was approved", UrgencyLevel.LOW, _IN_APP),
        _event("APPROVAL_DENIED", "Pending action was denied", UrgencyLevel.MEDIUM, _IN_APP),
    )
}

URGENCY_LEVELS: dict[UrgencyLevel, UrgencyConfig] = {
    UrgencyLevel.CRITICAL: UrgencyConfig(
        UrgencyLevel.CRITICAL, 1, "immediate", 0,
        (Channel.IN_APP, Channel.EMAIL, Channel.SMS, Channel.PUSH), 3, 300,
        "System down, security issues, data loss",
    ),
    UrgencyLevel.HIGH: UrgencyConfig(
        UrgencyLevel.HIGH, 2, "within 5 minutes", 300,
        (Channel.IN_APP, Channel.EMAIL, Channel.PUSH), 2, 1800,
        "Blocking issues, urgent requests, deadlines",
    ),
    UrgencyLevel.MEDIUM: UrgencyConfig(
        UrgencyLevel.MEDIUM, 3, "within 15 minutes", 900,
        _IN_APP_EMAIL, 1, 7200,
        "Standard notifications, new items",
    ),
    UrgencyLevel.LOW: UrgencyConfig(
        UrgencyLevel.LOW, 4, "batched hourly", 3600,
        _IN_APP, 0, None,
        "Informational, can be batched",
    ),
}

NOTIFICATION_CHANNELS: dict[Channel, ChannelConfig] = {
    Channel.IN_APP: ChannelConfig(Channel.IN_APP, "In-App Notification", True, True, 0.0, Channel.EMAIL),
    Channel.EMAIL: ChannelConfig(Channel.EMAIL, "Email", True, True, 0.0, None),
    Channel.SMS: ChannelConfig(Channel.SMS, "SMS Text Message", False, False, 0.01, Channel.EMAIL, 160),
    Channel.PUSH: ChannelConfig(Channel.PUSH, "Push Notification", False, True, 0.0, Channel.IN_APP, 100),
}

ROLE_NOTIFICATION_ROUTING: dict[str, RoleRouting] = {
    "ADMIN": RoleRouting(
        "ADMIN",
        ("SYSTEM_ALERT", "AUTOMATION_FAILED", "APPROVAL_REQUESTED", "INTAKE_ESCALATED", "BILLING_QUESTION", "PARTNERSHIP"),
        _IN_APP_EMAIL,
        quiet_hours=False,
    ),
    "OPERATOR": RoleRouting(
        "OPERATOR",
        ("SUPPORT_REQUEST", "INTAKE_CREATED", "INTAKE_ESCALATED", "AUTOMATION_FAILED", "SYSTEM_ALERT"),
        _IN_APP_EMAIL,
        quiet_hours=True,
    ),
    "PM": RoleRouting(
        "PM",
        ("PIPELINE_ITEM_OVERDUE", "PIPELINE_STAGE_CHANGED", "TASK_ASSIGNED", "PROJECT_INTAKE"),
        _IN_APP_EMAIL,
        quiet_hours=True,
    ),
    "SALES": RoleRouting("SALES", ("SALES_INQUIRY", "INTAKE_ASSIGNED", "PARTNERSHIP"), _IN_APP_EMAIL, quiet_hours=True),
    "SUPPORT": RoleRouting(
        "SUPPORT",
        ("SUPPORT_REQUEST", "INTAKE_ASSIGNED", "INTAKE_ESCALATED", "USER_MENTIONED"),
        _IN_APP_EMAIL,
        quiet_hours=True,
    ),
}

MESSAGE_TEMPLATES: dict[str, dict[str, str]] = {
    "INTAKE_CREATED": {
        "subject": "New {intakeType} Intake: {title}",
        "shortMessage": 'New intake "{title}" received from {source}',
    },
    "INTAKE_ASSIGNED": {
        "subject": "Intake Assigned: {title}",
        "shortMessage": 'You have been assigned "{title}"',
    },
    "INTAKE_ESCALATED": {
        "subject": "[ESCALATED] {title}",
        "shortMessage": 'ESCALATED: "{title}" requires attention',
    },
    "EVENT_REMINDER": {
        "subject": "Reminder: {eventTitle} in {timeUntil}",
        "shortMessage": "{eventTitle} starts in {timeUntil}",
    },
    "APPROVAL_REQUESTED": {
        "subject": "Approval Required: {actionType}",
        "shortMessage": "Agent requires approval for {actionType}",
    },
    "SYSTEM_ALERT": {
        "subject": "[ALERT] {alertTitle}",
        "shortMessage": "SYSTEM ALERT: {alertTitle}",
    },
}

CRITICAL_KEYWORDS = ("critical", "emergency", "down", "outage", "security")
HIGH_KEYWORDS = ("urgent", "important", "blocking", "escalate", "deadline")


class TeamMember(BaseModel):
    id: str
    name: str
    email: str = ""
    role: str


class ChannelPreferences(BaseModel):
    email_enabled: bool | None = None
    sms_enabled: bool | None = None
    push_enabled: bool | None = None
    quiet_hours_start: int | None = None
    quiet_hours_end: int | None = None


class BusinessHours(BaseModel):
    start: int = 9
    end: int = 17


class NotificationEvent(BaseModel):
    """Everything the notification prompt needs; the clock is an input."""

    event_type: str
    event_data: dict[str, Any] = Field(default_factory=dict)
    org_name: str
    current_datetime: datetime
    source_context: str = "system"
    timezone: str = "UTC"
    business_hours: BusinessHours = Field(default_factory=BusinessHours)
    team_members: list[TeamMember] = Field(default_factory=list)
    on_call: list[TeamMember] = Field(default_factory=list)
    user_preferences: dict[str, ChannelPreferences] = Field(default_factory=dict)


NOTIFICATION_SYSTEM_PROMPT = """You are a notification specialist for the OpsAgent platform. Your task is to determine the optimal notification strategy for events occurring in the system.

## Your Tasks

### 1. Determine Recipients
Identify who should be notified:
- **Primary Recipients**: Must be notified immediately
- **Secondary Recipients**: Should be notified but can be delayed
- **CC Recipients**: Informed but no action required

Consider user roles and responsibilities, assignment relationships, escalation chains, on-call schedules and user notification preferences.

### 2. Assess Urgency
- **CRITICAL**: System down, security issues, data loss - immediate notification via all channels
- **HIGH**: Blocking issues, tight deadlines - notify within 5 minutes
- **MEDIUM**: Standard notifications - deliver within 15 minutes
- **LOW**: Informational updates - can be batched hourly

### 3. Select Channels
Channel priority:
1. **IN_APP** - Always include for tracking
2. **EMAIL** - For detailed information
3. **PUSH** - For mobile alerts
4. **SMS** - Reserved for critical only

### 4. Generate Message Content
- **Subject/Title**: Concise, action-oriented
- **Short Message**: For push/SMS (max 100-160 chars)
- **Full Body**: For email/in-app with context and actions

### 5. Consider Escalation
- No response within expected time: escalate to next level
- Multiple failed notifications: try alternate channels

### 6. Handle Deduplication
- Same event within short timeframe
- Similar events that could be batched

## Response Format

Respond with valid JSON:

```json
{
  "analysis": {
    "eventType": "string",
    "eventSummary": "Brief description of what happened",
    "urgencyLevel": "CRITICAL|HIGH|MEDIUM|LOW",
    "urgencyReasoning": "Why this urgency level"
  },
  "recipients": {
    "primary": [{"userId": "string", "name": "string", "email": "string", "role": "string", "reason": "string"}],
    "secondary": [],
    "cc": []
  },
  "notifications": [
    {
      "recipientId": "string",
      "channels": ["IN_APP", "EMAIL"],
      "timing": "immediate|delayed|batched",
      "delayMinutes": 0,
      "content": {
        "subject": "string",
        "shortMessage": "string (max 160 chars)",
        "body": "string (markdown supported)",
        "actionUrl": "string | null"
      }
    }
  ],
  "escalation": {"enabled": false, "escalateAfterMinutes": 30, "escalateTo": ["userId"], "escalationMessage": "string"},
  "batching": {"canBatch": false, "batchKey": "string | null", "batchWindow": 60},
  "deduplication": {"isDuplicate": false, "existingNotificationId": "string | null", "action": "send|update|skip"},
  "quietHours": {"isQuietTime": false, "affectedRecipients": [], "deferUntil": "ISO datetime | null"}
}
```

## Important Rules

1. **Always include IN_APP** - Every notification should have an in-app component for audit
2. **Respect quiet hours** - Unless CRITICAL, defer notifications outside business hours
3. **SMS is expensive** - Only use for CRITICAL urgency or explicit user preference
4. **Personalize content** - Use recipient's name and relevant context
5. **Never spam** - Deduplicate similar notifications within short timeframes
6. **Respect preferences** - Honor user notification settings"""


def build_notification_prompts(event: NotificationEvent) -> PromptPair:
    hours = event.business_hours
    user = (
        "## Current Context\n"
        f"- Current Date/Time: {iso_utc(event.current_datetime)}\n"
        f"- Timezone: {event.timezone}\n"
        f"- Organization: {event.org_name}\n"
        f"- Business Hours: {hours.start}:00 - {hours.end}:00\n\n"
        "## Event Details\n"
        f"Event Type: {event.event_type}\n"
        f"Event Data: {pretty_json(event.event_data)}\n"
        f"Source Context: {event.source_context}\n\n"
        "## Available Recipients\n"
        f"Team Members: {pretty_json([member.model_dump() for member in event.team_members])}\n"
        f"On-Call: {pretty_json([member.model_dump() for member in event.on_call])}\n\n"
        "## User Notification Preferences\n"
        f"{pretty_json({key: prefs.model_dump(exclude_none=True) for key, prefs in event.user_preferences.items()})}"
    )
    return PromptPair(system=NOTIFICATION_SYSTEM_PROMPT, user=user)


def build_notification_prompt(event: NotificationEvent) -> str:
    return build_notification_prompts(event).combined()


def determine_urgency_level(event_type: str, event_data: Mapping[str, Any]) -> UrgencyLevel:
    """Explicit numeric urgency wins, then keywords, then the event type default."""
    urgency = event_data.get("urgency")
    if urgency and not isinstance(urgency, bool):
        try:
            value = float(urgency)
        except (TypeError, ValueError):
            value = None
        if value is not None:
            if value >= 5:
                return UrgencyLevel.CRITICAL
            if value >= 4:
                return UrgencyLevel.HIGH
            if value >= 3:
                return UrgencyLevel.MEDIUM
            return UrgencyLevel.LOW

    content = pretty_json(dict(event_data)).lower()
    if any(keyword in content for keyword in CRITICAL_KEYWORDS):
        return UrgencyLevel.CRITICAL
    if any(keyword in content for keyword in HIGH_KEYWORDS):
        return UrgencyLevel.HIGH

    config = NOTIFICATION_EVENT_TYPES.get(event_type)
    return config.default_urgency if config else UrgencyLevel.MEDIUM


def get_recipients_by_role(event_type: str, team_members: list[TeamMember]) -> list[TeamMember]:
    config = NOTIFICATION_EVENT_TYPES.get(event_type)
    if config is None or not config.notify_roles:
        return []
    return [member for member in team_members if member.role in config.notify_roles]


def is_quiet_hours(current_hour: int, quiet_hours_start: int = 22, quiet_hours_end: int = 7) -> bool:
    if quiet_hours_start < quiet_hours_end:
        return quiet_hours_start <= current_hour < quiet_hours_end
    return current_hour >= quiet_hours_start or current_hour < quiet_hours_end


def select_channels(urgency: UrgencyLevel | str, preferences: ChannelPreferences | None = None) -> list[Channel]:
    channels = list(URGENCY_LEVELS[UrgencyLevel(urgency)].channels)
    if preferences is None:
        return channels
    disabled = set()
    if preferences.email_enabled is False:
        disabled.add(Channel.EMAIL)
    if preferences.sms_enabled is False:
        disabled.add(Channel.SMS)
    if preferences.push_enabled is False:
        disabled.add(Channel.PUSH)
    return [channel for channel in channels if channel not in disabled]


def generate_short_message(event_type: str, data: Mapping[str, str | None], max_length: int = 160) -> str:
    """SMS/push-sized message from the event template, truncated with '...'."""
    template = MESSAGE_TEMPLATES.get(event_type)
    if template is None:
        return f"New {event_type.replace('_', ' ').lower()} notification"
    message = template["shortMessage"]
    for key, value in data.items():
        message = message.replace(f"{{{key}}}", value or "", 1)
    if len(message) > max_length:
        return message[: max_length - 3] + "..."
    return message
