"""Local star mirror used when the remote progress API cannot serve awards."""

import json
from datetime import datetime

import structlog
from pydantic import ValidationError

from skill_progress_sync.models.achievement import LessonType, StarAward
from skill_progress_sync.models.progress import utcnow
from skill_progress_sync.storage.key_value import KeyValueStorage

logger = structlog.get_logger()

STAR_KEY_PREFIX = "star_"
TOTAL_STARS_KEY = "totalStars"


def star_key(skill_id: str, lesson_type: LessonType | str) -> str:
    return f"{STAR_KEY_PREFIX}{skill_id}_{LessonType(lesson_type).value}"


class LocalFallbackCache:
    """Star records kept in a key/value storage, one key per (skill, mode).

    Layout:
        ``star_{skillId}_{lessonType}`` -> JSON ``{skillId, lessonType, awardedAt}``
        ``totalStars`` -> decimal counter, bumped once per newly created star key

    Args:
        storage: Backing key/value storage (in-memory or file based).
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    def _parse(self, key: str, raw: str | None) -> StarAward | None:
        if raw is None:
            return None
        try:
            return StarAward.model_validate(json.loads(raw))
        except (ValueError, ValidationError):
            logger.warning("local_star_parse_error", key=key)
            return None

    def has(self, skill_id: str, lesson_type: LessonType | str) -> bool:
        key = star_key(skill_id, lesson_type)
        return self._parse(key, self.storage.get(key)) is not None

    def put(
        self,
        skill_id: str,
        lesson_type: LessonType | str,
        awarded_at: datetime | None = None,
    ) -> bool:
        """Store a star unless a valid one already exists for the key.

        An unparsable entry under the key is overwritten and counted as new.

        Returns:
            True if a new entry was created, False if the key was present.
        """
        key = star_key(skill_id, lesson_type)
        if self.has(skill_id, lesson_type):
            return False
        star = StarAward(
            skill_id=skill_id,
            lesson_type=LessonType(lesson_type),
            awarded_at=awarded_at or utcnow(),
        )
        self.storage.set(key, json.dumps(star.to_wire()))
        self.storage.set(TOTAL_STARS_KEY, str(self._counter() + 1))
        logger.info("local_star_stored", skill_id=skill_id, lesson_type=star.lesson_type.value)
        return True

    def count(self) -> int:
        return len(self.list())

    def list(self) -> list[StarAward]:
        stars = []
        for key in sorted(self.storage.keys()):
            if not key.startswith(STAR_KEY_PREFIX):
                continue
            star = self._parse(key, self.storage.get(key))
            if star is not None:
                stars.append(star)
        return stars

    def clear(self) -> int:
        """Remove every star entry and the counter; returns stars removed."""
        removed = 0
        for key in self.storage.keys():
            if key.startswith(STAR_KEY_PREFIX):
                self.storage.delete(key)
                removed += 1
        self.storage.delete(TOTAL_STARS_KEY)
        logger.info("local_stars_cleared", removed=removed)
        return removed

    def _counter(self) -> int:
        raw = self.storage.get(TOTAL_STARS_KEY)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            logger.warning("local_star_counter_invalid", value=raw)
            return 0
