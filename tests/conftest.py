"""Shared fixtures: a throwaway sessions directory and scriptable LLM doubles."""

import threading

import pytest

from g2a.config import Settings
from g2a.core.models import BoxRef
from g2a.services.workspace import SessionWorkspace


class FakeResponse:
    def __init__(self, content):
        self.content = content


class FakeLLM:
    """Returns the queued answers in order; queued exceptions are raised instead."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.prompts = []
        self.threads = []

    def invoke(self, prompt):
        self.prompts.append(prompt)
        self.threads.append(threading.get_ident())
        answer = self.answers.pop(0) if self.answers else ""
        if isinstance(answer, Exception):
            raise answer
        return FakeResponse(answer)


@pytest.fixture
def settings(tmp_path):
    return Settings(sessions_path=tmp_path, llm_max_attempts=2, llm_retry_backoff=0.0)


@pytest.fixture
def workspace(tmp_path):
    return SessionWorkspace.open("S1", tmp_path)


def add_anchor(workspace, test_case_id, box_type, location, buffer, phrase):
    """Create an anchor over the first occurrence of ``phrase`` in ``buffer``."""
    start = buffer.index(phrase)
    box = BoxRef(test_case_id=test_case_id, box_type=box_type)
    return workspace.anchors.create_anchor(box, location, start, start + len(phrase), phrase)


@pytest.fixture
def make_anchor(workspace):
    def _make(test_case_id, box_type, location, buffer, phrase):
        return add_anchor(workspace, test_case_id, box_type, location, buffer, phrase)

    return _make


@pytest.fixture
def fake_llm():
    return FakeLLM
