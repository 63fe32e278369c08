"""
epm/models.py -- Employee Productivity Management ingestion models.

EpmApiKey / ProcessDetails are the stored dataclasses. ProcessDetailsIn is
the wire schema posted by desktop agents; its field names follow the agent's
historical mixed casing (taskguid, ProcessName, Eventdt, ...), so every field
carries an explicit alias.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from core.database import parse_iso


@dataclass
class EpmApiKey:
    name: str
    key_hash: str
    last_four: str
    id: int | None = None
    created_by_user_id: int | None = None
    is_active: bool = True
    last_used_at: str | None = None
    expires_at: str | None = None
    created_at: str | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        expiry = parse_iso(self.expires_at)
        if expiry is None:
            return False
        return expiry < (now or datetime.now(timezone.utc))


@dataclass
class ProcessDetails:
    """One process observation from an agent, keyed by task_guid."""

    task_guid: str
    id: int | None = None
    agent_guid: str | None = None
    process_id: str | None = None
    process_name: str | None = None
    main_window_title: str | None = None
    start_time: str | None = None
    event_dt: str | None = None
    idle_status: bool = False
    url_name: str | None = None
    url_domain: str | None = None
    lapsed_time: str | None = None
    tag1: str | None = None
    tag2: str | None = None


class ProcessDetailsIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    taskguid: str = Field(min_length=1)
    agent_guid: Optional[str] = Field(None, alias="agentGuid")
    process_id: Optional[Union[str, int]] = Field(None, alias="ProcessId")
    process_name: Optional[str] = Field(None, alias="ProcessName")
    main_window_title: Optional[str] = Field(None, alias="MainWindowTitle")
    start_time: Optional[str] = Field(None, alias="StartTime")
    event_dt: Optional[str] = Field(None, alias="Eventdt")
    idle_status: Optional[Union[bool, int]] = Field(None, alias="IdleStatus")
    url_name: Optional[str] = Field(None, alias="Urlname")
    url_domain: Optional[str] = Field(None, alias="UrlDomain")
    time_lapsed: Optional[Union[int, float, str]] = Field(None, alias="TimeLapsed")
    tag1: Optional[str] = None
    tag2: Optional[str] = Field(None, validation_alias=AliasChoices("Tag2", "tag2"))

    def to_process_details(self) -> ProcessDetails:
        """Normalize an agent payload. Unparseable dates are stored as NULL."""
        start = parse_agent_date(self.start_time)
        event = parse_agent_date(self.event_dt)
        return ProcessDetails(
            task_guid=self.taskguid,
            agent_guid=self.agent_guid or None,
            process_id=str(self.process_id) if self.process_id not in (None, "") else None,
            process_name=self.process_name or None,
            main_window_title=self.main_window_title or None,
            start_time=start.isoformat() if start else None,
            event_dt=event.isoformat() if event else None,
            idle_status=bool(self.idle_status),
            url_name=self.url_name or None,
            url_domain=self.url_domain or None,
            lapsed_time=str(self.time_lapsed) if self.time_lapsed is not None else None,
            tag1=self.tag1 or None,
            tag2=self.tag2 or None,
        )


_MONTHS = {
    name: index
    for index, name in enumerate(
        (
            "January",
            "February",
            "March",
            "April",
            "May",
            "June",
            "July",
            "August",
            "September",
            "October",
            "November",
            "December",
        ),
        start=1,
    )
}
# e.g. "16 July 2025 11:58:38"
_LONG_DATE_RE = re.compile(r"(\d+)\s+(\w+)\s+(\d+)\s+(\d+):(\d+):(\d+)")


def parse_agent_date(value: str | None) -> datetime | None:
    """Parse an ISO timestamp or the agent's "DD Month YYYY HH:MM:SS" form.

    Naive values are taken as UTC. Returns None when neither form matches.
    """
    if not value:
        return None
    parsed = parse_iso(value)
    if parsed is not None:
        return parsed
    m = _LONG_DATE_RE.search(value)
    if m is None:
        return None
    day, month_name, year, hour, minute, second = m.groups()
    month = _MONTHS.get(month_name)
    if month is None:
        return None
    try:
        return datetime(int(year), month, int(day), int(hour), int(minute), int(second), tzinfo=timezone.utc)
    except ValueError:
        return None
