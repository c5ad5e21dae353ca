"""Scheduling prompt and calendar heuristics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal, NamedTuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from opsagent.prompts.base import PromptPair, iso_utc, pretty_json


@dataclass(frozen=True)
class MeetingType:
    name: str
    default_duration: int
    keywords: tuple[str, ...]
    description: str


MEETING_TYPES: dict[str, MeetingType] = {
    "QUICK_SYNC": MeetingType(
        "Quick Sync", 15, ("quick", "sync", "check-in", "standup", "brief", "touch base"),
        "Short status update or quick question",
    ),
    "STANDARD_MEETING": MeetingType(
        "Standard Meeting", 30, ("meeting", "discuss", "talk", "chat", "call"),
        "Standard business meeting or discussion",
    ),
    "DEMO": MeetingType(
        "Demo/Presentation", 45, ("demo", "presentation", "walkthrough", "show", "showcase"),
        "Product demonstration or presentation",
    ),
    "DISCOVERY_CALL": MeetingType(
        "Discovery Call", 30, ("discovery", "intro", "introduction", "learn about", "explore"),
        "Initial call to understand needs",
    ),
    "WORKSHOP": MeetingType(
        "Workshop/Training", 90, ("workshop", "training", "session", "hands-on", "learning"),
        "Extended session for training or workshops",
    ),
    "INTERVIEW": MeetingType(
        "Interview", 45, ("interview", "candidate", "hiring", "recruiting"),
        "Job interview or candidate screening",
    ),
    "ONE_ON_ONE": MeetingType(
        "1:1 Meeting", 30, ("1:1", "one-on-one", "1-on-1", "personal", "private"),
        "Private meeting between two people",
    ),
    "PLANNING": MeetingType(
        "Planning Session", 60, ("planning", "strategy", "roadmap", "kickoff", "sprint"),
        "Planning or strategy session",
    ),
    "REVIEW": MeetingType(
        "Review Meeting", 45, ("review", "retrospective", "feedback", "assessment"),
        "Review or retrospective meeting",
    ),
}

DEFAULT_DURATION_MINUTES = 30


@dataclass(frozen=True)
class TimePreferences:
    business_start: int = 9
    business_end: int = 17
    lunch_start: int = 12
    lunch_end: int = 13
    buffer_minutes: int = 15
    max_meetings_per_day: int = 8
    max_consecutive_hours: int = 3


TIME_PREFERENCES = TimePreferences()


class Reminder(NamedTuple):
    minutes: int
    method: Literal["email", "popup"]


REMINDER_PRESETS: dict[str, tuple[Reminder, ...]] = {
    "standard": (Reminder(60, "email"), Reminder(15, "popup")),
    "important": (Reminder(1440, "email"), Reminder(60, "email"), Reminder(15, "popup")),
    "quick": (Reminder(5, "popup"),),
    "external": (Reminder(1440, "email"), Reminder(120, "email"), Reminder(30, "popup")),
}


class CalendarSlot(BaseModel):
    start: str
    end: str


class CalendarEvent(CalendarSlot):
    id: str
    title: str


class Attendee(BaseModel):
    id: str
    name: str
    email: str
    role: str | None = None
    availability: list[CalendarSlot] = Field(default_factory=list)


class SchedulingRequest(BaseModel):
    request_type: Literal["CREATE_EVENT", "UPDATE_EVENT", "CANCEL_EVENT", "FIND_SLOT", "RESCHEDULE"]
    raw_request: str
    org_name: str
    current_datetime: datetime
    timezone: str = "UTC"
    existing_events_today: list[CalendarEvent] = Field(default_factory=list)
    existing_events_this_week: list[CalendarEvent] = Field(default_factory=list)
    busy_slots: list[CalendarSlot] = Field(default_factory=list)
    attendees: list[Attendee] = Field(default_factory=list)


class BusinessHoursCheck(NamedTuple):
    is_valid: bool
    reason: str | None = None


def _meeting_type_lines() -> str:
    return "\n".join(
        f"- **{meeting.name}** ({meeting.default_duration} min): {meeting.description}"
        for meeting in MEETING_TYPES.values()
    )


SCHEDULING_SYSTEM_PROMPT = f"""You are a scheduling specialist for the OpsAgent platform. Your task is to analyze scheduling requests and make optimal decisions about calendar event management.

## Your Tasks

### 1. Parse Scheduling Request
Extract the requested date/time, duration, attendees, purpose, location and priority.

### 2. Identify Meeting Type
Classify the meeting type to determine default duration:
{_meeting_type_lines()}

### 3. Check for Conflicts
Analyze the requested time against:
- Existing events for all attendees
- Buffer requirements ({TIME_PREFERENCES.buffer_minutes} min minimum between meetings)
- Daily meeting limits (max {TIME_PREFERENCES.max_meetings_per_day} meetings/day)
- Consecutive meeting limits (max {TIME_PREFERENCES.max_consecutive_hours} hours back-to-back)

### 4. Suggest Time Slots
If conflicts exist or no specific time requested:
- Suggest 3 alternative time slots within the next 48 hours
- Prioritize during business hours (9 AM - 5 PM)
- Avoid lunch hours (12 PM - 1 PM)
- Prefer morning slots (9-11 AM) for important meetings

### 5. Determine Reminders
- **Standard**: 1 hour (email) + 15 minutes (popup)
- **Important/External**: 24 hours (email) + 1 hour (email) + 15 minutes (popup)
- **Quick**: 5 minutes (popup)

## Response Format

Respond with valid JSON:

```json
{{
  "analysis": {{
    "requestType": "CREATE_EVENT|UPDATE_EVENT|CANCEL_EVENT|FIND_SLOT|RESCHEDULE",
    "meetingType": "{'|'.join(MEETING_TYPES)}",
    "parsedRequest": {{"title": "string", "requestedStart": "ISO datetime | null", "duration": 30, "priority": "normal|high"}},
    "confidence": 0.0
  }},
  "conflicts": {{"hasConflicts": false, "conflictingEvents": [], "conflictResolution": "string"}},
  "recommendation": {{
    "action": "CREATE|SUGGEST_ALTERNATIVES|REQUIRE_CONFIRMATION|REJECT",
    "reasoning": "string",
    "primarySlot": {{"start": "ISO datetime", "end": "ISO datetime", "score": 0.0}},
    "alternativeSlots": []
  }},
  "eventDetails": {{
    "title": "string",
    "start": "ISO datetime",
    "end": "ISO datetime",
    "duration": 30,
    "attendees": [],
    "reminders": [{{"minutes": 60, "method": "email"}}, {{"minutes": 15, "method": "popup"}}]
  }},
  "requiresApproval": false,
  "approvalReason": "string | null"
}}
```

## Important Rules

1. **Respect business hours** - Default to 9 AM - 5 PM unless explicitly requested otherwise
2. **Buffer time is mandatory** - Always maintain 15-minute buffer between meetings
3. **External attendees need extra lead time** - Send invites at least 24 hours in advance
4. **Never double-book** - If conflict exists, suggest alternatives rather than overlapping
5. **Be conservative with duration** - Better to schedule longer and end early"""


def build_scheduling_prompts(request: SchedulingRequest) -> PromptPair:
    def dump(items: list[BaseModel]) -> str:
        return pretty_json([item.model_dump() for item in items])

    user = (
        "## Current Context\n"
        f"- Current Date/Time: {iso_utc(request.current_datetime)}\n"
        f"- Timezone: {request.timezone}\n"
        f"- Organization: {request.org_name}\n\n"
        "## Request Details\n"
        f"Request Type: {request.request_type}\n"
        f"Raw Request: {request.raw_request}\n\n"
        "## Existing Calendar State\n"
        f"Existing Events Today: {dump(request.existing_events_today)}\n"
        f"Existing Events This Week: {dump(request.existing_events_this_week)}\n"
        f"Busy Slots: {dump(request.busy_slots)}\n\n"
        "## Available Attendees\n"
        f"{dump(request.attendees)}"
    )
    return PromptPair(system=SCHEDULING_SYSTEM_PROMPT, user=user)


def build_scheduling_prompt(request: SchedulingRequest) -> str:
    return build_scheduling_prompts(request).combined()


def estimate_duration(meeting_type_or_keywords: str) -> int:
    normalized = meeting_type_or_keywords.lower()
    for meeting in MEETING_TYPES.values():
        if any(keyword in normalized for keyword in meeting.keywords):
            return meeting.default_duration
    return DEFAULT_DURATION_MINUTES


def _local_hour(value: datetime, tz_name: str) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    zone = timezone.utc if tz_name.upper() == "UTC" else ZoneInfo(tz_name)
    return value.astimezone(zone).hour


def is_within_business_hours(value: datetime, tz_name: str = "UTC") -> BusinessHoursCheck:
    hour = _local_hour(value, tz_name)
    if hour < TIME_PREFERENCES.business_start:
        return BusinessHoursCheck(False, "Before business hours (9 AM)")
    if hour >= TIME_PREFERENCES.business_end:
        return BusinessHoursCheck(False, "After business hours (5 PM)")
    return BusinessHoursCheck(True)


def is_during_lunch(value: datetime, tz_name: str = "UTC") -> bool:
    hour = _local_hour(value, tz_name)
    return TIME_PREFERENCES.lunch_start <= hour < TIME_PREFERENCES.lunch_end


def get_recommended_reminders(
    has_external_attendees: bool, is_high_priority: bool, duration: int
) -> list[Reminder]:
    if has_external_attendees:
        return list(REMINDER_PRESETS["external"])
    if is_high_priority:
        return list(REMINDER_PRESETS["important"])
    if duration <= 15:
        return list(REMINDER_PRESETS["quick"])
    return list(REMINDER_PRESETS["standard"])
