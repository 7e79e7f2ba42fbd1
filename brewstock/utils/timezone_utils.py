from __future__ import annotations

from datetime import datetime, timezone as dt_timezone


class TimezoneUtils:
    """UTC helpers shared by billing models and services.

    SQLite drops tzinfo on read, so every datetime that leaves the database is
    passed through ``ensure_timezone_aware`` before it is compared.
    """

    @staticmethod
    def utc_now() -> datetime:
        """Return the current UTC timestamp (timezone aware)."""
        return datetime.now(dt_timezone.utc)

    @staticmethod
    def ensure_timezone_aware(
        dt: datetime | None, assume_utc: bool = True
    ) -> datetime | None:
        """Guarantee that a datetime carries timezone information."""
        if dt is None:
            return None
        if dt.tzinfo is None:
            if not assume_utc:
                raise ValueError("Naive datetime provided without explicit timezone handling.")
            return dt.replace(tzinfo=dt_timezone.utc)
        return dt

    @staticmethod
    def parse_iso(value: str) -> datetime:
        """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into aware UTC."""
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        parsed = datetime.fromisoformat(normalized)
        return TimezoneUtils.ensure_timezone_aware(parsed).astimezone(dt_timezone.utc)

    @staticmethod
    def format_for_api(dt: datetime | None) -> str | None:
        """Serialize a datetime as an ISO string in UTC."""
        aware = TimezoneUtils.ensure_timezone_aware(dt)
        return aware.astimezone(dt_timezone.utc).isoformat() if aware else None
