"""Server-side usage telemetry: sessions, events, performance metrics and the dashboard summary.

The frontend opens a session, then posts events and metrics against it. Events
for an unknown session are still stored; they just do not bump any counter.
"""

import logging
import uuid
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from circulation.errors import ValidationError
from circulation.validators import optional_text, require_text

if TYPE_CHECKING:
    from circulation.storage import BaseStorage

logger = logging.getLogger(__name__)

# timeRange değerleri ve kapsadıkları gün sayısı; bilinmeyen değerler 7 güne düşer
TIME_RANGES = {"1d": 1, "7d": 7, "30d": 30}
DEFAULT_TIME_RANGE = "7d"
TOP_LIMIT = 10
SEARCH_CATEGORY = "search"


@dataclass
class TelemetrySession:
    id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    events_count: int = 0
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    referrer: Optional[str] = None


@dataclass(frozen=True)
class TelemetryEvent:
    id: str
    session_id: str
    event_type: str
    event_category: str
    event_name: str
    timestamp: datetime
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    page_url: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None
    duration_ms: Optional[float] = None
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "event_type": self.event_type,
            "event_category": self.event_category,
            "event_name": self.event_name,
            "timestamp": self.timestamp.isoformat(),
            "user_agent": self.user_agent,
            "ip_address": self.ip_address,
            "page_url": self.page_url,
            "payload": self.payload,
            "duration_ms": self.duration_ms,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class PerformanceMetric:
    id: str
    metric_type: str
    metric_name: str
    value: float
    timestamp: datetime
    unit: Optional[str] = None
    session_id: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None


def resolve_time_range(time_range: Optional[str]) -> int:
    return TIME_RANGES.get((time_range or DEFAULT_TIME_RANGE).lower(), TIME_RANGES[DEFAULT_TIME_RANGE])


def _ranked(counter: Counter, key: str) -> List[Dict[str, Any]]:
    ordered = sorted(counter.items(), key=lambda item: (-item[1], str(item[0])))
    return [{key: value, "count": count} for value, count in ordered]


class TelemetryService:
    """Ingests telemetry into the configured storage and summarizes it."""

    def __init__(self, storage: "BaseStorage", clock: Optional[Callable[[], datetime]] = None) -> None:
        self.storage = storage
        self.clock = clock or datetime.now

    def _since(self, time_range: Optional[str]) -> datetime:
        return self.clock() - timedelta(days=resolve_time_range(time_range))

    # ------------------------- Kayıt ------------------------- #
    def start_session(self, user_agent: Optional[str] = None, ip_address: Optional[str] = None,
                      referrer: Optional[str] = None) -> TelemetrySession:
        session = TelemetrySession(
            id=str(uuid.uuid4()),
            start_time=self.clock(),
            user_agent=optional_text(user_agent),
            ip_address=optional_text(ip_address),
            referrer=optional_text(referrer),
        )
        self.storage.create_session(session)
        logger.debug("Started telemetry session %s", session.id)
        return session

    def record_event(self, session_id: Optional[str], event_type: Optional[str],
                     event_category: Optional[str], event_name: Optional[str],
                     user_agent: Optional[str] = None, ip_address: Optional[str] = None,
                     page_url: Optional[str] = None, payload: Optional[Dict[str, Any]] = None,
                     duration_ms: Optional[float] = None,
                     error_message: Optional[str] = None) -> TelemetryEvent:
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("payload must be an object")
        event = TelemetryEvent(
            id=str(uuid.uuid4()),
            session_id=require_text(session_id, "sessionId"),
            event_type=require_text(event_type, "eventType"),
            event_category=require_text(event_category, "eventCategory"),
            event_name=require_text(event_name, "eventName"),
            timestamp=self.clock(),
            user_agent=optional_text(user_agent),
            ip_address=optional_text(ip_address),
            page_url=optional_text(page_url),
            payload=payload,
            duration_ms=duration_ms,
            error_message=optional_text(error_message),
        )
        return self.storage.append_event(event)

    def record_metric(self, session_id: Optional[str], metric_type: Optional[str],
                      metric_name: Optional[str], value: Optional[float], unit: Optional[str] = None,
                      additional_data: Optional[Dict[str, Any]] = None) -> PerformanceMetric:
        if value is None or isinstance(value, bool):
            raise ValidationError("value must be a number")
        metric = PerformanceMetric(
            id=str(uuid.uuid4()),
            metric_type=require_text(metric_type, "metricType"),
            metric_name=require_text(metric_name, "metricName"),
            value=float(value),
            timestamp=self.clock(),
            unit=optional_text(unit),
            session_id=optional_text(session_id),
            additional_data=additional_data,
        )
        return self.storage.append_metric(metric)

    # ------------------------- Raporlama ------------------------- #
    def list_events(self, limit: int = 50, offset: int = 0, category: Optional[str] = None,
                    event_name: Optional[str] = None, time_range: Optional[str] = None) -> List[Dict[str, Any]]:
        """Newest events first, each with the start time of its session."""
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        events = self.storage.list_events(self._since(time_range), category=category,
                                          event_name=event_name, limit=limit, offset=offset)
        starts: Dict[str, Optional[str]] = {}
        result = []
        for event in events:
            if event.session_id not in starts:
                session = self.storage.get_session(event.session_id)
                starts[event.session_id] = session.start_time.isoformat() if session else None
            entry = event.to_dict()
            entry["session_start"] = starts[event.session_id]
            result.append(entry)
        return result

    def dashboard(self, time_range: Optional[str] = None) -> Dict[str, Any]:
        since = self._since(time_range)
        events = self.storage.list_events(since)

        names = Counter(e.event_name for e in events)
        categories = Counter(e.event_category for e in events)
        days = Counter(e.timestamp.date().isoformat() for e in events)
        errors = Counter((e.event_name, e.error_message) for e in events if e.error_message)
        queries = Counter(
            str(e.payload["query"]) for e in events
            if e.event_category == SEARCH_CATEGORY and e.payload and e.payload.get("query") is not None
        )

        values: Dict[str, List[float]] = defaultdict(list)
        for metric in self.storage.list_metrics(since):
            values[metric.metric_name].append(metric.value)

        error_rows = sorted(errors.items(), key=lambda item: (-item[1], item[0]))[:TOP_LIMIT]
        return {
            "totalEvents": len(events),
            "totalSessions": self.storage.count_sessions(since),
            "topEvents": _ranked(names, "event_name")[:TOP_LIMIT],
            "eventsByCategory": _ranked(categories, "event_category"),
            "eventsOverTime": [{"date": day, "count": days[day]} for day in sorted(days)],
            "errorEvents": [
                {"event_name": name, "error_message": message, "count": count}
                for (name, message), count in error_rows
            ],
            "searchAnalytics": _ranked(queries, "search_query")[:TOP_LIMIT],
            "performanceMetrics": [
                {"metric_name": name, "count": len(vals), "average": sum(vals) / len(vals)}
                for name, vals in sorted(values.items())
            ],
        }
