"""Calendar source implementations (macOS Calendar.app, Google Calendar)."""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from calbridge.logging_config import get_logger
from calbridge.modules.calendar.errors import (
    BackendError,
    CalendarError,
    ErrorKind,
    TerminalBackendError,
    TransientBackendError,
    UnsupportedOperation,
)
from calbridge.modules.calendar.models import (
    Attendee,
    BusyPeriod,
    CalendarEvent,
    CalendarInfo,
    CreateEventRequest,
    EventPatch,
    EventType,
    Operation,
    ParticipantAvailability,
    ReminderOverride,
    Reminders,
    ResponseType,
    RetryPolicy,
    SourceId,
)
from calbridge.modules.calendar.retry import call_with_retry

logger = get_logger(__name__)


class CalendarSource(ABC):
    """Uniform contract for one calendar backend.

    Whether a source is *enabled* is configuration; whether it *supports* an
    operation is a property of the adapter. Unsupported operations raise
    UnsupportedOperation so the fallback layer can route around them.
    """

    source: SourceId
    capabilities: frozenset[Operation] = frozenset({Operation.LIST})

    def supports(self, operation: Operation) -> bool:
        return operation in self.capabilities

    @abstractmethod
    async def list_events(
        self, start: dt.datetime, end: dt.datetime, calendar_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        """List events overlapping ``[start, end)``."""

    @abstractmethod
    async def is_available(self) -> bool:
        """Whether the backend can be reached right now. Never raises."""

    async def get_event(self, event_id: str, calendar_id: Optional[str] = None) -> CalendarEvent:
        raise UnsupportedOperation(self.source, Operation.GET)

    async def create_event(self, request: CreateEventRequest) -> CalendarEvent:
        raise UnsupportedOperation(self.source, Operation.CREATE)

    async def update_event(
        self, event_id: str, patch: EventPatch, calendar_id: Optional[str] = None,
    ) -> CalendarEvent:
        raise UnsupportedOperation(self.source, Operation.UPDATE)

    async def delete_event(self, event_id: str, calendar_id: Optional[str] = None) -> None:
        raise UnsupportedOperation(self.source, Operation.DELETE)

    async def respond_to_event(
        self, event_id: str, response: ResponseType, calendar_id: Optional[str] = None,
    ) -> None:
        raise UnsupportedOperation(self.source, Operation.RESPOND)

    async def list_calendars(self) -> list[CalendarInfo]:
        raise UnsupportedOperation(self.source, Operation.LIST_CALENDARS)

    async def query_free_busy(
        self, identities: list[str], start: dt.datetime, end: dt.datetime,
    ) -> dict[str, ParticipantAvailability]:
        raise UnsupportedOperation(self.source, Operation.FREEBUSY)


# ── macOS Calendar.app ──────────────────────────────────────────────

_JXA_LIST_EVENTS = """
const app = Application("Calendar");
const rangeStart = new Date(%(start)s);
const rangeEnd = new Date(%(end)s);
const wanted = %(calendar)s;
const out = [];
app.calendars().forEach(function (cal) {
  if (wanted !== null && cal.name() !== wanted) { return; }
  const evts = cal.events.whose({_and: [
    {startDate: {_lessThan: rangeEnd}},
    {endDate: {_greaterThan: rangeStart}}
  ]})();
  evts.forEach(function (e) {
    out.push({
      uid: e.uid(),
      title: e.summary() || "",
      start: e.startDate().toISOString(),
      end: e.endDate().toISOString(),
      allDay: e.alldayEvent(),
      location: e.location() || "",
      description: e.description() || "",
      calendar: cal.name()
    });
  });
});
JSON.stringify(out);
"""


class AppleCalendarSource(CalendarSource):
    """macOS Calendar.app via ``osascript`` (JavaScript for Automation).

    Read-only: creating, updating, deleting and responding are not available
    through this backend.
    """

    source = SourceId.OS
    capabilities = frozenset({Operation.LIST})

    def __init__(self, timeout: int = 30, retry_policy: Optional[RetryPolicy] = None) -> None:
        self._timeout = timeout
        self._retry_policy = retry_policy

    async def is_available(self) -> bool:
        return sys.platform == "darwin" and shutil.which("osascript") is not None

    async def _run_jxa(self, script: str) -> str:
        """Execute a JXA script and return its stdout."""
        logger.debug("jxa_executing", script=script[:200])
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                ["osascript", "-l", "JavaScript", "-e", script],
                capture_output=True, text=True, timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransientBackendError(
                self.source, f"osascript timed out after {self._timeout} seconds", kind=ErrorKind.NETWORK,
            ) from exc
        except FileNotFoundError as exc:
            raise TerminalBackendError(self.source, "osascript is not installed") from exc
        if result.returncode != 0:
            logger.error("jxa_error", stderr=result.stderr)
            raise TerminalBackendError(self.source, f"osascript error: {result.stderr.strip()}")
        return result.stdout.strip()

    async def list_events(
        self, start: dt.datetime, end: dt.datetime, calendar_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        script = _JXA_LIST_EVENTS % {
            "start": json.dumps(_to_utc_iso(start)),
            "end": json.dumps(_to_utc_iso(end)),
            "calendar": json.dumps(calendar_id),
        }

        async def _fetch() -> str:
            return await self._run_jxa(script)

        raw = await call_with_retry(
            _fetch, source=self.source, operation="list events", policy=self._retry_policy,
        )
        return [self._to_event(item) for item in json.loads(raw or "[]")]

    def _to_event(self, item: dict[str, Any]) -> CalendarEvent:
        return CalendarEvent(
            id=item["uid"],
            ical_uid=item["uid"],
            title=item.get("title", ""),
            start=dt.datetime.fromisoformat(item["start"]),
            end=dt.datetime.fromisoformat(item["end"]),
            is_all_day=bool(item.get("allDay")),
            source=self.source,
            calendar=item.get("calendar", ""),
            location=item.get("location", ""),
            description=item.get("description", ""),
        )


def _to_utc_iso(value: dt.datetime) -> str:
    if value.tzinfo is None:
        return value.isoformat()
    return value.astimezone(dt.UTC).isoformat().replace("+00:00", "Z")


# ── Google Calendar ─────────────────────────────────────────────────

_PROPERTY_KEYS = {
    EventType.OUT_OF_OFFICE: "outOfOfficeProperties",
    EventType.FOCUS_TIME: "focusTimeProperties",
    EventType.WORKING_LOCATION: "workingLocationProperties",
    EventType.BIRTHDAY: "birthdayProperties",
}

_PATCH_KEYS = {
    "title": "summary",
    "location": "location",
    "description": "description",
    "event_type": "eventType",
    "out_of_office_properties": "outOfOfficeProperties",
    "focus_time_properties": "focusTimeProperties",
    "working_location_properties": "workingLocationProperties",
    "birthday_properties": "birthdayProperties",
    "recurrence": "recurrence",
}

_GOOGLE_RESPONSES = {
    ResponseType.ACCEPT: "accepted",
    ResponseType.DECLINE: "declined",
    ResponseType.TENTATIVE: "tentative",
}


def _parse_google_time(value: dict[str, Any]) -> tuple[dt.datetime, bool]:
    """Return (moment, is_date_only) for a Google start/end object."""
    if value.get("dateTime"):
        return dt.datetime.fromisoformat(value["dateTime"]), False
    day = dt.date.fromisoformat(value["date"])
    return dt.datetime.combine(day, dt.time.min), True


def detect_event_type(item: dict[str, Any]) -> EventType:
    """Map Google's ``eventType`` to EventType; anything unknown is DEFAULT."""
    try:
        return EventType(item.get("eventType") or EventType.DEFAULT)
    except ValueError:
        return EventType.DEFAULT


def event_from_google(item: dict[str, Any], calendar_id: str = "") -> CalendarEvent:
    """Convert a Google Calendar API event resource to a CalendarEvent."""
    start, all_day = _parse_google_time(item.get("start", {}))
    end, _ = _parse_google_time(item.get("end", {}))
    event_type = detect_event_type(item)
    properties_key = _PROPERTY_KEYS.get(event_type)

    reminders = None
    if "reminders" in item:
        reminders = Reminders(
            use_default=item["reminders"].get("useDefault", True),
            overrides=[
                ReminderOverride(method=o.get("method", "popup"), minutes=o["minutes"])
                for o in item["reminders"].get("overrides", [])
            ],
        )

    original_start = None
    if item.get("originalStartTime"):
        original_start, _ = _parse_google_time(item["originalStartTime"])

    return CalendarEvent(
        id=item["id"],
        title=item.get("summary", ""),
        start=start,
        end=end,
        is_all_day=all_day,
        source=SourceId.CLOUD,
        event_type=event_type,
        ical_uid=item.get("iCalUID"),
        calendar=calendar_id or item.get("organizer", {}).get("email", ""),
        location=item.get("location", ""),
        description=item.get("description", ""),
        attendees=[
            Attendee(
                email=a["email"],
                name=a.get("displayName", ""),
                status=a.get("responseStatus", "needsAction"),
            )
            for a in item.get("attendees", [])
            if a.get("email")
        ],
        organizer=item.get("organizer", {}).get("email", ""),
        status=item.get("status", "confirmed"),
        recurring_event_id=item.get("recurringEventId"),
        original_start=original_start,
        recurrence=item.get("recurrence", []),
        reminders=reminders,
        type_properties=item.get(properties_key, {}) if properties_key else {},
    )


class GoogleCalendarSource(CalendarSource):
    """Google Calendar API integration.

    Blocking client calls run in a worker thread. Every call is wrapped in the
    retry policy, and ``HttpError`` is translated into the error taxonomy by
    status code before the policy sees it.
    """

    source = SourceId.CLOUD
    capabilities = frozenset(Operation)

    SCOPES = ["https://www.googleapis.com/auth/calendar"]
    PAGE_SIZE = 250

    def __init__(
        self,
        credentials_file: str = "",
        token_file: str = "",
        default_calendar: str = "primary",
        timezone: str = "UTC",
        retry_policy: Optional[RetryPolicy] = None,
        freebusy_batch_size: int = 50,
        service: Any = None,
    ) -> None:
        self._credentials_file = credentials_file
        self._token_file = token_file
        self._default_calendar = default_calendar
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._retry_policy = retry_policy
        self._batch_size = freebusy_batch_size
        self._service = service

    def _get_service(self):
        """Lazy-init the Google Calendar service from the stored token."""
        if self._service is not None:
            return self._service

        from pathlib import Path

        from google.auth.transport.requests import Request
        from google.oauth2.credentials import Credentials
        from googleapiclient.discovery import build

        token_path = Path(self._token_file)
        if not token_path.exists():
            raise TerminalBackendError(
                self.source, "Google token not found. Complete authentication first.", kind=ErrorKind.AUTH,
            )
        creds = Credentials.from_authorized_user_file(str(token_path), self.SCOPES)
        if not creds.valid:
            if creds.expired and creds.refresh_token:
                logger.info("google_token_refreshing")
                creds.refresh(Request())
                token_path.write_text(creds.to_json())
            else:
                raise TerminalBackendError(
                    self.source, "Google token expired and no refresh token available.", kind=ErrorKind.AUTH,
                )

        self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    async def _execute(
        self,
        operation: str,
        build_request: Callable[[Any], Any],
        policy: Optional[RetryPolicy] = None,
    ) -> Any:
        """Build and execute one API request under the retry policy."""

        async def _call() -> Any:
            try:
                service = self._get_service()
                return await asyncio.to_thread(lambda: build_request(service).execute())
            except HttpError as exc:
                reason = getattr(exc, "reason", None) or str(exc)
                raise BackendError.from_status(self.source, exc.resp.status, f"{operation}: {reason}") from exc
            except RefreshError as exc:
                raise TerminalBackendError(
                    self.source, f"{operation}: token refresh failed: {exc}", kind=ErrorKind.AUTH,
                ) from exc
            except (TransportError, TimeoutError, ConnectionError) as exc:
                raise TransientBackendError(
                    self.source, f"{operation}: {exc}", kind=ErrorKind.NETWORK,
                ) from exc

        return await call_with_retry(
            _call, source=self.source, operation=operation, policy=policy or self._retry_policy,
        )

    def _rfc3339(self, value: dt.datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=self._tz)
        return value.isoformat()

    def _time_body(self, value: dt.datetime, all_day: bool) -> dict[str, str]:
        if all_day:
            return {"date": value.date().isoformat()}
        return {"dateTime": self._rfc3339(value), "timeZone": self._timezone}

    async def is_available(self) -> bool:
        try:
            await self._execute(
                "health check",
                lambda svc: svc.calendarList().list(maxResults=1),
                policy=RetryPolicy(max_attempts=1),
            )
            return True
        except CalendarError as exc:
            logger.warning("google_unavailable", error=str(exc))
            return False

    async def list_events(
        self,
        start: dt.datetime,
        end: dt.datetime,
        calendar_id: Optional[str] = None,
    ) -> list[CalendarEvent]:
        calendar_id = calendar_id or self._default_calendar
        items: list[dict[str, Any]] = []
        page_token: Optional[str] = None

        while True:
            response = await self._execute(
                "list events",
                lambda svc, token=page_token: svc.events().list(
                    calendarId=calendar_id,
                    timeMin=self._rfc3339(start),
                    timeMax=self._rfc3339(end),
                    maxResults=self.PAGE_SIZE,
                    pageToken=token,
                    singleEvents=True,
                ),
            )
            items.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return [event_from_google(item, calendar_id) for item in items]

    async def _get_raw_event(self, event_id: str, calendar_id: str) -> dict[str, Any]:
        return await self._execute(
            "get event",
            lambda svc: svc.events().get(calendarId=calendar_id, eventId=event_id),
        )

    async def get_event(self, event_id: str, calendar_id: Optional[str] = None) -> CalendarEvent:
        calendar_id = calendar_id or self._default_calendar
        return event_from_google(await self._get_raw_event(event_id, calendar_id), calendar_id)

    async def create_event(self, request: CreateEventRequest) -> CalendarEvent:
        calendar_id = request.calendar_id or self._default_calendar
        body: dict[str, Any] = {
            "summary": request.title,
            "start": self._time_body(request.start, request.is_all_day),
            "end": self._time_body(request.end, request.is_all_day),
        }
        if request.location is not None:
            body["location"] = request.location
        if request.description is not None:
            body["description"] = request.description
        if request.attendees:
            body["attendees"] = [{"email": email} for email in request.attendees]
        if request.reminders is not None:
            body["reminders"] = _reminders_body(request.reminders)
        if request.event_type != EventType.DEFAULT:
            body["eventType"] = request.event_type.value
            if request.type_properties and request.event_type in _PROPERTY_KEYS:
                body[_PROPERTY_KEYS[request.event_type]] = request.type_properties
        if request.recurrence:
            body["recurrence"] = request.recurrence

        created = await self._execute(
            "create event",
            lambda svc: svc.events().insert(
                calendarId=calendar_id,
                body=body,
                sendUpdates="all" if request.attendees else "none",
            ),
        )
        logger.info("event_created", source=self.source, title=request.title)
        return event_from_google(created, calendar_id)

    def _patch_body(self, patch: EventPatch) -> dict[str, Any]:
        body: dict[str, Any] = {}
        for name in patch.set_fields():
            value = getattr(patch, name)
            if name in ("start", "end"):
                body[name] = self._time_body(value, bool(patch.is_all_day))
            elif name == "attendees":
                body["attendees"] = [{"email": email} for email in value]
            elif name == "reminders":
                body["reminders"] = _reminders_body(value)
            elif name in _PATCH_KEYS:
                body[_PATCH_KEYS[name]] = value.value if isinstance(value, EventType) else value
        return body

    async def update_event(
        self, event_id: str, patch: EventPatch, calendar_id: Optional[str] = None,
    ) -> CalendarEvent:
        calendar_id = calendar_id or self._default_calendar
        body = self._patch_body(patch)
        updated = await self._execute(
            "update event",
            lambda svc: svc.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body=body,
                sendUpdates="all" if patch.attendees is not None else "none",
            ),
        )
        return event_from_google(updated, calendar_id)

    async def delete_event(self, event_id: str, calendar_id: Optional[str] = None) -> None:
        calendar_id = calendar_id or self._default_calendar
        await self._execute(
            "delete event",
            lambda svc: svc.events().delete(calendarId=calendar_id, eventId=event_id),
        )

    async def get_primary_calendar_email(self) -> str:
        info = await self._execute(
            "get primary calendar",
            lambda svc: svc.calendarList().get(calendarId="primary"),
        )
        return info.get("id", "")

    async def respond_to_event(
        self, event_id: str, response: ResponseType, calendar_id: Optional[str] = None,
    ) -> None:
        calendar_id = calendar_id or self._default_calendar
        user_email = await self.get_primary_calendar_email()
        if not user_email:
            raise TerminalBackendError(self.source, "Failed to retrieve user email from Google Calendar")

        event = await self._get_raw_event(event_id, calendar_id)
        attendees = event.get("attendees", [])
        if not attendees:
            raise TerminalBackendError(
                self.source, "Event has no attendees. Cannot respond to this event.", kind=ErrorKind.VALIDATION,
            )
        if event.get("organizer", {}).get("email") == user_email:
            raise TerminalBackendError(
                self.source, "Cannot respond to event as the organizer.", kind=ErrorKind.VALIDATION,
            )
        if not any(a.get("email") == user_email for a in attendees):
            raise TerminalBackendError(
                self.source, f"User {user_email} is not an attendee of this event.", kind=ErrorKind.VALIDATION,
            )

        status = _GOOGLE_RESPONSES[response]
        updated = [
            {**a, "responseStatus": status} if a.get("email") == user_email else a
            for a in attendees
        ]
        await self._execute(
            "respond to event",
            lambda svc: svc.events().patch(
                calendarId=calendar_id,
                eventId=event_id,
                body={"attendees": updated},
                sendUpdates="all",
            ),
        )

    async def query_free_busy(
        self, identities: list[str], start: dt.datetime, end: dt.datetime,
    ) -> dict[str, ParticipantAvailability]:
        """Busy periods per identity, one request per batch of identities.

        Batches run concurrently. Identities the API reports errors for, and
        every identity of a batch whose request failed, are returned with
        ``error`` set instead of failing the whole query.
        """
        batches = [
            identities[offset:offset + self._batch_size]
            for offset in range(0, len(identities), self._batch_size)
        ]

        async def _query(batch: list[str]) -> dict[str, Any]:
            logger.info("freebusy_query", identities=len(batch), start=start.isoformat(), end=end.isoformat())
            return await self._execute(
                "query free/busy",
                lambda svc: svc.freebusy().query(body={
                    "timeMin": self._rfc3339(start),
                    "timeMax": self._rfc3339(end),
                    "items": [{"id": identity} for identity in batch],
                }),
            )

        responses = await asyncio.gather(*(_query(batch) for batch in batches), return_exceptions=True)

        result: dict[str, ParticipantAvailability] = {}
        for batch, response in zip(batches, responses):
            if isinstance(response, BaseException):
                if not isinstance(response, Exception):
                    raise response
                logger.error("freebusy_batch_failed", identities=len(batch), error=str(response))
                for identity in batch:
                    result[identity] = ParticipantAvailability(identity=identity, error=str(response))
                continue
            calendars = response.get("calendars", {})
            for identity in batch:
                data = calendars.get(identity)
                if data is None:
                    result[identity] = ParticipantAvailability(
                        identity=identity, error="No free/busy data returned",
                    )
                elif data.get("errors"):
                    reasons = ", ".join(e.get("reason", "unknown") for e in data["errors"])
                    result[identity] = ParticipantAvailability(identity=identity, error=reasons)
                else:
                    result[identity] = ParticipantAvailability(
                        identity=identity,
                        busy=[
                            BusyPeriod(
                                start=dt.datetime.fromisoformat(period["start"]),
                                end=dt.datetime.fromisoformat(period["end"]),
                            )
                            for period in data.get("busy", [])
                        ],
                    )
        return result

    async def list_calendars(self) -> list[CalendarInfo]:
        response = await self._execute(
            "list calendars",
            lambda svc: svc.calendarList().list(showHidden=True),
        )
        return [
            CalendarInfo(
                id=item.get("id", ""),
                name=item.get("summary", ""),
                source=self.source,
                is_primary=item.get("primary", False),
                color=item.get("backgroundColor"),
                access_role=item.get("accessRole"),
            )
            for item in response.get("items", [])
        ]


def _reminders_body(reminders: Reminders) -> dict[str, Any]:
    body: dict[str, Any] = {"useDefault": reminders.use_default}
    if reminders.overrides:
        body["overrides"] = [{"method": o.method, "minutes": o.minutes} for o in reminders.overrides]
    return body
