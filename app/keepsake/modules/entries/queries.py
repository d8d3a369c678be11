from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

from app.keepsake.cache import cached
from app.keepsake.modules.documents.queries import PersonSummary
from app.keepsake.modules.entries.models import Entry, UserUpload
from app.keepsake.modules.entries.tags import entry_detail_tag, entry_list_tag

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

# Entry pages change less often than document workspaces.
ENTRY_DETAIL_TTL = 30


@dataclass(frozen=True)
class EntrySummary:
    id: int
    name: str
    slug: str
    birth_date: date
    death_date: date
    cause_of_death: str | None
    location: str | None
    primary_image_url: str | None
    updated_at: datetime


@dataclass(frozen=True)
class EntryUploadInfo:
    id: int
    url: str
    key: str
    is_primary: bool
    created_at: datetime


@dataclass(frozen=True)
class EntryDetail:
    summary: EntrySummary
    created_at: datetime
    owner: PersonSummary
    uploads: tuple[EntryUploadInfo, ...]

    @property
    def id(self) -> int:
        return self.summary.id


def _summary(entry: Entry) -> EntrySummary:
    return EntrySummary(
        id=entry.id,
        name=entry.name,
        slug=entry.slug,
        birth_date=entry.birth_date,
        death_date=entry.death_date,
        cause_of_death=entry.cause_of_death,
        location=entry.location,
        primary_image_url=entry.primary_image_url,
        updated_at=entry.updated_at,
    )


def get_entries_for_user(s: "Session", user_id: int) -> list[EntrySummary]:
    def load() -> list[EntrySummary]:
        entries = (
            s.query(Entry)
            .filter(Entry.owner_id == user_id)
            .order_by(Entry.updated_at.desc(), Entry.id.desc())
            .all()
        )
        return [_summary(e) for e in entries]

    return cached(("entries-for-user", user_id), load, tags=[entry_list_tag(user_id)])


def get_entry_detail(s: "Session", entry_id: int) -> EntryDetail | None:
    def load() -> EntryDetail | None:
        entry = s.get(Entry, entry_id)
        if entry is None:
            return None
        uploads = (
            s.query(UserUpload)
            .filter(UserUpload.entry_id == entry_id)
            .order_by(UserUpload.is_primary.desc(), UserUpload.created_at.desc(), UserUpload.id.desc())
            .all()
        )
        return EntryDetail(
            summary=_summary(entry),
            created_at=entry.created_at,
            owner=PersonSummary.from_user(entry.owner),  # type: ignore[arg-type]
            uploads=tuple(
                EntryUploadInfo(id=u.id, url=u.url, key=u.key, is_primary=u.is_primary, created_at=u.created_at)
                for u in uploads
            ),
        )

    return cached(("entry-detail", entry_id), load, tags=[entry_detail_tag(entry_id)], ttl=ENTRY_DETAIL_TTL)
