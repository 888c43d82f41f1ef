"""Server-side progress and star persistence (JSON + fcntl.flock + atomic write)."""

import fcntl
import json
import os
import tempfile
from pathlib import Path

import structlog

from skill_progress_sync.models.achievement import LessonType, StarAward
from skill_progress_sync.models.progress import SkillProgressRecord

logger = structlog.get_logger()

REPOSITORY_FILENAME = "progress.json"


def _star_id(skill_id: str, lesson_type: LessonType) -> str:
    return f"{skill_id}:{lesson_type.value}"


class ProgressRepository:
    """Progress records and stars for every learner of the reference server.

    Args:
        data_dir: Directory for ``progress.json``; None keeps everything in memory.
    """

    def __init__(self, data_dir: Path | None = None):
        self.path = Path(data_dir) / REPOSITORY_FILENAME if data_dir is not None else None
        self._records: dict[str, dict[str, SkillProgressRecord]] = {}
        self._stars: dict[str, dict[str, StarAward]] = {}
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        with open(self.path, encoding="utf-8") as f:
            fcntl.flock(f, fcntl.LOCK_SH)
            try:
                data = json.load(f)
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)
        for learner_id, records in data.get("records", {}).items():
            self._records[learner_id] = {
                skill_id: SkillProgressRecord.model_validate(record)
                for skill_id, record in records.items()
            }
        for learner_id, stars in data.get("stars", {}).items():
            parsed = [StarAward.model_validate(star) for star in stars]
            self._stars[learner_id] = {_star_id(*star.key): star for star in parsed}
        logger.info("progress_repository_loaded", path=str(self.path), learners=len(self._records))

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "records": {
                learner_id: {skill_id: r.to_wire() for skill_id, r in records.items()}
                for learner_id, records in self._records.items()
            },
            "stars": {
                learner_id: [star.to_wire() for star in stars.values()]
                for learner_id, stars in self._stars.items()
            },
        }
        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, delete=False, suffix=".json", encoding="utf-8"
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                json.dump(data, tmp, default=str)
            except Exception:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise
        os.replace(tmp_path, self.path)

    def get(self, learner_id: str, skill_id: str) -> SkillProgressRecord | None:
        return self._records.get(learner_id, {}).get(skill_id)

    def save(self, learner_id: str, record: SkillProgressRecord) -> None:
        self._records.setdefault(learner_id, {})[record.skill_id] = record
        self._save()

    def delete(self, learner_id: str, skill_id: str) -> bool:
        removed = self._records.get(learner_id, {}).pop(skill_id, None)
        if removed is None:
            return False
        self._save()
        return True

    def records_for_learner(self, learner_id: str) -> list[SkillProgressRecord]:
        return list(self._records.get(learner_id, {}).values())

    def all_records(self) -> list[tuple[str, SkillProgressRecord]]:
        return [
            (learner_id, record)
            for learner_id, records in self._records.items()
            for record in records.values()
        ]

    def award_star(
        self, learner_id: str, skill_id: str, lesson_type: LessonType
    ) -> tuple[StarAward, bool]:
        """Create the star unless it exists; returns (star, created)."""
        stars = self._stars.setdefault(learner_id, {})
        star_id = _star_id(skill_id, lesson_type)
        existing = stars.get(star_id)
        if existing is not None:
            return existing, False
        star = StarAward(skill_id=skill_id, lesson_type=lesson_type)
        stars[star_id] = star
        self._save()
        return star, True

    def stars_for(self, learner_id: str) -> list[StarAward]:
        return list(self._stars.get(learner_id, {}).values())
