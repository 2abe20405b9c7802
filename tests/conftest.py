from pathlib import Path

import pytest

from rbuild import config
from rbuild import logging as rlog
from rbuild.recipe import RecipeRegistry


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv(config.ENV_VAR, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("rbuild.recipe.REGISTRY", RecipeRegistry())
    config.reset()
    yield
    config.reset()
    rlog.configure({"console": {"enabled": False}})


class RecordingRunner:
    """Stands in for rbuild.process.run_command and remembers every call."""

    def __init__(self, exit_codes=None):
        self.calls = []
        self.exit_codes = dict(exit_codes or {})

    def __call__(self, argv, *, cwd, env_overrides=None, timeout=None, log_path=None):
        from rbuild.process import CommandResult

        argv = list(argv)
        self.calls.append({"argv": argv, "cwd": Path(cwd), "env": dict(env_overrides or {}), "timeout": timeout})
        key = " ".join(argv[:2]) if argv[0] == "make" else argv[0]
        return CommandResult(returncode=self.exit_codes.get(key, 0), output=f"ran {key}\n")

    @property
    def argvs(self):
        return [c["argv"] for c in self.calls]


@pytest.fixture()
def runner() -> RecordingRunner:
    return RecordingRunner()
