import tempfile

import pygit2
import pytest


def setUpGitConfigSearchPaths(prefix=""):
    # Don't let unit tests access host system's git config
    levels = [
        pygit2.enums.ConfigLevel.GLOBAL,
        pygit2.enums.ConfigLevel.XDG,
        pygit2.enums.ConfigLevel.SYSTEM,
        pygit2.enums.ConfigLevel.PROGRAMDATA,
    ]
    for level in levels:
        if prefix:
            path = f"{prefix}_{level.name}"
        else:
            path = ""
        pygit2.settings.search_path[level] = path


@pytest.fixture(scope='session', autouse=True)
def maskHostGitConfig():
    setUpGitConfigSearchPaths("")


@pytest.fixture
def tempDir() -> tempfile.TemporaryDirectory:
    td = tempfile.TemporaryDirectory(prefix="subtreepublishertest-")
    yield td
    td.cleanup()


@pytest.fixture(autouse=True)
def committerIdentity(monkeypatch):
    # Tag creation falls back to these when no identity is configured
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Publishing Bot")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "bot@example.com")
