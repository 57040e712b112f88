"""Shared fixtures: hermetic git, a local bare remote, stand-in executables."""

import os
import shutil
import subprocess
import sys

import pytest

from config.settings import Settings

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")

_AUTHOR_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.test",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.test",
}


@pytest.fixture(autouse=True)
def hermetic_git(monkeypatch, tmp_path_factory):
    """Keep the developer's global/system git config out of the tests."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", os.devnull)


def git(cwd, *args):
    """Run git for test setup/inspection and return stdout."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, check=True, capture_output=True, text=True,
        env=dict(os.environ, **_AUTHOR_ENV),
    )
    return result.stdout.strip()


def write_script(path, body):
    """Write an executable Python script and return its path as a string."""
    path.write_text(f"#!{sys.executable}\n{body}")
    path.chmod(0o755)
    return str(path)


def make_settings(tmp_path, **overrides):
    values = {
        "projects_root": str(tmp_path / "projects"),
        "agent_args": [],
        "agent_timeout": 20,
        "agent_retry_backoff": 0,
        "git_timeout": 30,
        "pr_timeout": 10,
        "shutdown_grace": 1,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def remote_repo(tmp_path):
    """A bare repository with one commit on ``main``. Returns its path."""
    seed = tmp_path / "seed"
    seed.mkdir()
    git(seed, "init")
    git(seed, "symbolic-ref", "HEAD", "refs/heads/main")
    (seed / "README.md").write_text("# demo\n")
    git(seed, "add", "README.md")
    git(seed, "commit", "-m", "initial")
    remote = tmp_path / "remote.git"
    git(tmp_path, "clone", "--bare", str(seed), str(remote))
    return str(remote)


@pytest.fixture
def agent_script(tmp_path):
    """Factory for stand-in agents: ``agent_script(body)`` -> executable path."""
    counter = {"n": 0}

    def _make(body):
        counter["n"] += 1
        return write_script(tmp_path / f"agent{counter['n']}", body)

    return _make


WRITE_LICENSE_AGENT = """\
import pathlib, sys
instruction = sys.argv[-1]
pathlib.Path("LICENSE").write_text("MIT License\\n")
pathlib.Path("INSTRUCTION.txt").write_text(instruction)
print("agent done")
"""

NOOP_AGENT = "print('nothing to change')\n"

FAILING_AGENT = """\
import sys
print('cannot do that', file=sys.stderr)
sys.exit(1)
"""
