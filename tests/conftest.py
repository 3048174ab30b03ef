"""
Shared fixtures for the SurveyGuard test suite
"""
import asyncio
import random

import pytest

from surveyguard.core.registry import Registry, ValidationResult
from surveyguard.core.signals import CrossOriginError, Difficulty, Session, SurveyConfig


class FakeClock:
    """Manual clock whose sleep advances time instead of waiting"""

    def __init__(self, start=1_000_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeRegistry(Registry):
    """In-memory registry recording every call"""

    def __init__(self, allowed=True, redirect=None, questions=None, sightings=None):
        self.allowed = allowed
        self.redirect = redirect
        self.questions = questions if questions is not None else []
        self.sightings = sightings
        self.settings = {}
        self.fail_settings = False
        self.fail_validation = False
        self.fail_questions = False
        self.fail_writes = False
        self.hang_writes = False
        self.hang_sightings = False
        self.validations = []
        self.failures = []
        self.status_updates = []
        self.records = []

    async def _write(self):
        if self.hang_writes:
            await asyncio.Event().wait()
        if self.fail_writes:
            raise RuntimeError("registry unavailable")

    async def validate_session(self, project_id, uid):
        self.validations.append((project_id, uid))
        if self.fail_validation:
            raise RuntimeError("registry unavailable")
        return ValidationResult(allowed=self.allowed, redirect=self.redirect,
                                token='session-token' if self.allowed else None)

    async def record_challenge_failure(self, project_id, uid, gate, metadata):
        await self._write()
        self.failures.append((project_id, uid, gate, metadata))

    async def update_session_status(self, project_id, uid, status, metadata):
        await self._write()
        self.status_updates.append((project_id, uid, status, metadata))

    async def submit_quality_record(self, project_id, uid, record, raw_signals):
        await self._write()
        self.records.append((project_id, uid, record, raw_signals))

    async def fetch_trap_questions(self, project_id):
        if self.fail_questions:
            raise RuntimeError("question bank unavailable")
        return list(self.questions)

    async def count_device_sightings(self, project_id, device_id, exclude_uid):
        if self.hang_sightings:
            await asyncio.Event().wait()
        return self.sightings

    async def fetch_project_settings(self, project_id):
        if self.fail_settings:
            raise RuntimeError("settings unavailable")
        return dict(self.settings)


class ScriptedFrame:
    """Frame probe that replays a list of locations; None means cross-origin"""

    def __init__(self, locations=None):
        self.locations = list(locations or [])
        self.current = None
        self.reads = 0

    def push(self, location):
        self.locations.append(location)

    def read_location(self):
        self.reads += 1
        if self.locations:
            self.current = self.locations.pop(0)
        if self.current is None:
            raise CrossOriginError("Blocked a frame from accessing a cross-origin frame")
        if isinstance(self.current, Exception):
            raise self.current
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def session(clock):
    return Session(project_id='proj-1', uid='uid-abc123', resp_id='resp-1', start_time=clock())


@pytest.fixture
def survey_config():
    return SurveyConfig(
        difficulty=Difficulty.EASY,
        min_completion_time=60,
        blacklisted_domains=['suspicious.com'],
        completion_domain='protegeresearchsurvey.com',
        trusted_origins=['https://survey-partner.example'],
    )


@pytest.fixture
def rng():
    return random.Random(42)


TRAP_QUESTIONS = [
    {'id': '1', 'text': 'Type the word "blue"', 'questionType': 'TEXT', 'correctAnswer': 'blue'},
]


@pytest.fixture
def trap_questions():
    return [dict(q) for q in TRAP_QUESTIONS]
