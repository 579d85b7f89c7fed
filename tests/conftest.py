import textwrap
from datetime import datetime, timedelta, timezone

import pytest

from wfaudit import FetchError, RunRecord, parse_workflow


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClient:
    """In-memory stand-in for GitHubClient.

    ``files`` maps repository -> {file name: text or exception to raise}.
    """

    def __init__(self, runs=None, files=None, failing_runs=(), failing_listing=()):
        self.runs = runs or {}
        self.files = files or {}
        self.failing_runs = set(failing_runs)
        self.failing_listing = set(failing_listing)
        self.fetched = []

    def list_run_records(self, repository, limit):
        if repository in self.failing_runs:
            raise FetchError(f"{repository}: 503 Service Unavailable")
        return self.runs.get(repository, [])[:limit]

    def list_definition_file_names(self, repository):
        if repository in self.failing_listing:
            raise FetchError(f"{repository}: 403 Forbidden")
        return list(self.files.get(repository, {}))

    def fetch_definition_content(self, repository, file_name):
        self.fetched.append((repository, file_name))
        value = self.files[repository][file_name]
        if isinstance(value, Exception):
            raise value
        return value


@pytest.fixture
def parse():
    def _parse(text):
        return parse_workflow(textwrap.dedent(text))
    return _parse


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_run():
    def _make_run(repository="x", workflow="CI", event="push", conclusion="success",
                  age=timedelta(days=1), status="completed"):
        return RunRecord(repository, workflow, NOW - age, status, conclusion, event)
    return _make_run


@pytest.fixture
def fake_client():
    return FakeClient
