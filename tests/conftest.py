"""Shared fixtures for the study-setup test suite."""

from concurrent.futures import Executor, Future

import pytest

from studysetup.config import DEFAULT_CONFIG
from studysetup.db import MockDatabase
from studysetup.graph import StatusUpdater, StudyLocks, build_graph
from studysetup.interview import InMemorySessionStore
from studysetup.llm import MockLLM


class InlineExecutor(Executor):
    """Runs submitted work immediately, so background writes are deterministic."""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as e:
            future.set_exception(e)
        return future


@pytest.fixture
def empty_study():
    return {
        "id": "study-1",
        "description": "",
        "study_type": "",
        "objective": "",
        "target_audience": "",
        "interview_questions": "",
    }


@pytest.fixture
def questions_only_study():
    """Every field filled except interview_questions."""
    return {
        "id": "study-1",
        "description": "x",
        "study_type": "Exploratory",
        "objective": "y",
        "target_audience": "z",
        "interview_questions": "",
    }


@pytest.fixture
def complete_study():
    return {
        "id": "study-1",
        "description": "Dashboard navigation study",
        "study_type": "Behavioral",
        "objective": "Learn how analysts find reports",
        "target_audience": "Data analysts",
        "interview_questions": "1. How do you find reports today?",
    }


@pytest.fixture
def mock_db(empty_study):
    return MockDatabase([empty_study])


@pytest.fixture
def mock_llm():
    return MockLLM()


@pytest.fixture
def services(mock_db, mock_llm):
    return {
        "llm": mock_llm,
        "store": mock_db,
        "config": DEFAULT_CONFIG,
        "locks": StudyLocks(),
        "sessions": InMemorySessionStore(),
        "status_updater": StatusUpdater(mock_db, executor=InlineExecutor()),
        "sleep": lambda seconds: None,
    }


@pytest.fixture
def graph(services):
    return build_graph(services)
