"""Daily writing statistics kept alongside the project."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any


@dataclass
class WritingHistoryEntry:
    day: date
    words_written: int
    draft_word_count: int | None = None
    session_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"date": self.day.isoformat(), "wordsWritten": self.words_written}
        if self.draft_word_count is not None:
            data["draftWordCount"] = self.draft_word_count
        if self.session_seconds is not None:
            data["sessionDuration"] = self.session_seconds
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WritingHistoryEntry:
        return cls(
            day=date.fromisoformat(str(data["date"])[:10]),
            words_written=int(data.get("wordsWritten", 0)),
            draft_word_count=data.get("draftWordCount"),
            session_seconds=data.get("sessionDuration"),
        )


@dataclass
class WritingHistory:
    """One entry per calendar day, kept sorted by date."""

    entries: list[WritingHistoryEntry] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.entries.sort(key=lambda e: e.day)

    def record(
        self,
        day: date,
        words_written: int,
        draft_word_count: int | None = None,
        session_seconds: float | None = None,
    ) -> WritingHistoryEntry:
        """Add words to ``day``'s entry, creating it if needed."""
        for entry in self.entries:
            if entry.day == day:
                entry.words_written += words_written
                if draft_word_count is not None:
                    entry.draft_word_count = draft_word_count
                if session_seconds is not None:
                    entry.session_seconds = (entry.session_seconds or 0) + session_seconds
                return entry
        entry = WritingHistoryEntry(day, words_written, draft_word_count, session_seconds)
        self.entries.append(entry)
        self.entries.sort(key=lambda e: e.day)
        return entry

    # ── Statistics ───────────────────────────────────────────

    @property
    def total_words(self) -> int:
        return sum(e.words_written for e in self.entries)

    @property
    def days_written(self) -> int:
        return len(self.entries)

    @property
    def average_words_per_day(self) -> int:
        if not self.entries:
            return 0
        return self.total_words // len(self.entries)

    @property
    def best_day(self) -> WritingHistoryEntry | None:
        if not self.entries:
            return None
        return max(self.entries, key=lambda e: e.words_written)

    def current_streak(self, today: date) -> int:
        """Consecutive writing days ending today (or yesterday, if today is still empty)."""
        days = {e.day for e in self.entries if e.words_written > 0}
        cursor = today if today in days else today - timedelta(days=1)
        streak = 0
        while cursor in days:
            streak += 1
            cursor -= timedelta(days=1)
        return streak

    @property
    def longest_streak(self) -> int:
        days = sorted({e.day for e in self.entries if e.words_written > 0})
        longest = current = 0
        previous: date | None = None
        for day in days:
            current = current + 1 if previous and day - previous == timedelta(days=1) else 1
            longest = max(longest, current)
            previous = day
        return longest

    def words_since(self, days: int, today: date) -> int:
        cutoff = today - timedelta(days=days)
        return sum(e.words_written for e in self.entries if e.day >= cutoff)

    # ── Serialization ────────────────────────────────────────

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.entries]

    @classmethod
    def from_list(cls, items: list[dict[str, Any]] | None) -> WritingHistory:
        return cls([WritingHistoryEntry.from_dict(item) for item in items or []])
