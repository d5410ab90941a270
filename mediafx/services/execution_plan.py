"""
Execution plan - normalized, ordered clip requests for one montage job.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClipRequest:
    """One bounded time range to extract from one source."""

    source_location: str
    start_offset: float
    duration: float
    sequence_index: int

    @property
    def end_offset(self) -> float:
        return self.start_offset + self.duration


@dataclass(frozen=True)
class ExecutionPlan:
    """Validated clip requests in output order."""

    clips: tuple[ClipRequest, ...]
    dropped_entries: int = 0

    def __len__(self) -> int:
        return len(self.clips)

    def __iter__(self):
        return iter(self.clips)

    @property
    def is_empty(self) -> bool:
        return not self.clips

    @property
    def total_duration(self) -> float:
        return sum(clip.duration for clip in self.clips)

    def distinct_locations(self) -> list[str]:
        """Source locations referenced by the plan, in first-seen order."""
        seen: dict[str, None] = {}
        for clip in self.clips:
            seen.setdefault(clip.source_location, None)
        return list(seen)


def _coerce_seconds(value: Any) -> Optional[float]:
    """Coerce a JSON-ish value to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(seconds):
        return None
    return seconds


def normalize_plan(entries: Iterable[Mapping[str, Any]]) -> ExecutionPlan:
    """
    Build an ExecutionPlan from raw clip entries.

    Each entry is a mapping with "location", "start_offset" and "duration".
    Entries are dropped (not repaired) when the location is missing or blank,
    the duration is missing, non-numeric, non-finite or <= 0, or the offset is
    non-numeric, non-finite or negative. A missing offset means 0.

    Surviving entries keep their input order and are numbered 0..n-1.
    """
    clips: list[ClipRequest] = []
    dropped = 0

    for position, entry in enumerate(entries):
        location = entry.get("location")
        if isinstance(location, str):
            location = location.strip()
        if not location or not isinstance(location, str):
            logger.debug(f"Dropping clip #{position}: missing source location")
            dropped += 1
            continue

        duration = _coerce_seconds(entry.get("duration"))
        if duration is None or duration <= 0:
            logger.debug(f"Dropping clip #{position}: invalid duration {entry.get('duration')!r}")
            dropped += 1
            continue

        raw_offset = entry.get("start_offset")
        if raw_offset is None:
            start_offset = 0.0
        else:
            start_offset = _coerce_seconds(raw_offset)
            if start_offset is None or start_offset < 0:
                logger.debug(f"Dropping clip #{position}: invalid start offset {raw_offset!r}")
                dropped += 1
                continue

        clips.append(
            ClipRequest(
                source_location=location,
                start_offset=start_offset,
                duration=duration,
                sequence_index=len(clips),
            )
        )

    if dropped:
        logger.info(f"Plan normalization dropped {dropped} invalid clip(s), kept {len(clips)}")

    return ExecutionPlan(clips=tuple(clips), dropped_entries=dropped)
