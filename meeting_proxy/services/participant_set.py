from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime

from meeting_proxy.schemas.participation import ParticipationRecord, ParticipationSource


@dataclass
class ParticipantEntry:
    email: str
    name: str
    is_host: bool = False


class ParticipantSet:
    """Participants of one occurrence, de-duplicated by lower-cased email."""

    def __init__(self) -> None:
        self._entries: dict[str, ParticipantEntry] = {}

    def add_host(self, email: str | None, name: str | None = None) -> None:
        normalized_email = _normalize_email(email)
        if not normalized_email:
            return
        existing = self._entries.get(normalized_email)
        self._entries[normalized_email] = ParticipantEntry(
            email=normalized_email,
            name=_clean_name(name) or (existing.name if existing else "") or "Host",
            is_host=True,
        )

    def add(self, email: str | None, name: str | None = None) -> None:
        normalized_email = _normalize_email(email)
        if not normalized_email:
            return
        existing = self._entries.get(normalized_email)
        fallback_name = existing.name if existing else normalized_email.split("@")[0]
        self._entries[normalized_email] = ParticipantEntry(
            email=normalized_email,
            name=_clean_name(name) or fallback_name,
            is_host=existing.is_host if existing else False,
        )

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and _normalize_email(email) in self._entries

    def __iter__(self) -> Iterator[ParticipantEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def to_records(
        self,
        *,
        occurrence_id: str,
        meeting_id: str,
        topic: str,
        host_email: str | None,
        start_time: datetime,
        end_time: datetime | None,
        duration_minutes: int,
        has_summary: bool,
        has_recording: bool,
        source: ParticipationSource,
        indexed_at: datetime,
    ) -> list[ParticipationRecord]:
        return [
            ParticipationRecord(
                occurrence_id=occurrence_id,
                meeting_id=meeting_id,
                topic=topic,
                host_email=host_email,
                start_time=start_time,
                end_time=end_time,
                duration_minutes=duration_minutes,
                participant_email=entry.email,
                participant_name=entry.name,
                has_summary=has_summary,
                has_recording=has_recording,
                indexed_at=indexed_at,
                source=source,
            )
            for entry in self._entries.values()
        ]


def _normalize_email(email: str | None) -> str | None:
    if not isinstance(email, str):
        return None
    cleaned = email.strip().lower()
    if not cleaned or "@" not in cleaned:
        return None
    return cleaned


def _clean_name(name: str | None) -> str | None:
    if not isinstance(name, str):
        return None
    cleaned = name.strip()
    return cleaned or None
