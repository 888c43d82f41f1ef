"""Shared fixtures: an in-process fake of the remote progress API."""

import json

import httpx
import pytest

from skill_progress_sync.achievements.awarder import AchievementAwarder
from skill_progress_sync.achievements.reconcile import ReconciliationSync
from skill_progress_sync.remote.client import ProgressApiClient
from skill_progress_sync.remote.progress_store import ProgressStore
from skill_progress_sync.storage.fallback_cache import LocalFallbackCache
from skill_progress_sync.storage.key_value import InMemoryStorage

BASE_URL = "http://progress.test"
AWARDED_AT = "2026-10-19T10:00:00+00:00"


def progress_record(
    skill_id: str,
    chat_completed: bool = False,
    sessions_completed: int = 0,
    sim_completed: bool = False,
) -> dict:
    """Wire-format SkillProgressRecord with just the fields eligibility reads."""
    return {
        "skillId": skill_id,
        "patientSimProgress": {
            "isCompleted": sim_completed,
            "completedSteps": [],
            "totalSteps": 9,
            "bestScore": 100 if sim_completed else 0,
            "attempts": 1 if sim_completed else 0,
            "timeSpent": 300 if sim_completed else 0,
        },
        "chatSimProgress": {
            "isCompleted": chat_completed,
            "sessionsCompleted": sessions_completed,
            "totalSessions": 1,
            "timeSpent": 120 * sessions_completed,
        },
        "overallProgress": {
            "completionPercentage": 0,
            "isCompleted": False,
            "totalTimeSpent": 0,
        },
    }


class FakeProgressApi:
    """MockTransport handler emulating the /progress endpoints.

    Toggles model the failure modes the engine must survive: the whole API
    unreachable, star endpoints absent, or individual skills erroring.
    """

    def __init__(self):
        self.records: dict[str, dict] = {}
        self.stars: dict[tuple[str, str], dict] = {}
        self.star_endpoints = True
        self.sync_endpoint = False
        self.unreachable = False
        self.failing_skills: set[str] = set()
        self.requests: list[httpx.Request] = []

    def add_star(self, skill_id: str, lesson_type: str) -> None:
        self.stars[(skill_id, lesson_type)] = {
            "skillId": skill_id,
            "lessonType": lesson_type,
            "awardedAt": AWARDED_AT,
        }

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        path = request.url.path
        if path.startswith("/progress/stars"):
            return self._stars(request, path)
        if path.startswith("/progress/skill/"):
            skill_id = path.split("/")[3]
            if skill_id in self.failing_skills:
                return httpx.Response(500, json={"message": "Server error"})
            record = self.records.get(skill_id, progress_record(skill_id))
            return httpx.Response(200, json=record)
        if path == "/progress/summary":
            rows = [{"skillId": skill_id} for skill_id in self.records]
            return httpx.Response(200, json={"totalSkills": len(rows), "skillsProgress": rows})
        return httpx.Response(404, json={"message": "Not Found"})

    def _stars(self, request: httpx.Request, path: str) -> httpx.Response:
        if not self.star_endpoints:
            return httpx.Response(404, json={"message": "Not Found"})
        if path == "/progress/stars/award":
            body = json.loads(request.content)
            key = (body["skillId"], body["lessonType"])
            already = key in self.stars
            if not already:
                self.add_star(*key)
            return httpx.Response(
                200, json={"success": True, "alreadyAwarded": already, "star": self.stars[key]}
            )
        if path == "/progress/stars/sync" and self.sync_endpoint:
            return httpx.Response(200, json={"success": True, "awarded": 0, "totalStars": len(self.stars)})
        if path == "/progress/stars" and request.method == "GET":
            stars = list(self.stars.values())
            return httpx.Response(200, json={"totalStars": len(stars), "stars": stars})
        return httpx.Response(404, json={"message": "Not Found"})


@pytest.fixture
def fake_api():
    return FakeProgressApi()


@pytest.fixture
async def api_client(fake_api):
    http = httpx.AsyncClient(transport=httpx.MockTransport(fake_api))
    client = ProgressApiClient(BASE_URL, credentials="session-token", http_client=http)
    yield client
    await http.aclose()


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def cache(storage):
    return LocalFallbackCache(storage)


@pytest.fixture
def store(api_client):
    return ProgressStore(api_client)


@pytest.fixture
def awarder(store, cache):
    return AchievementAwarder(store, cache)


@pytest.fixture
def reconciler(store, awarder):
    return ReconciliationSync(store, awarder)
