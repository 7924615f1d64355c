"""
Tests for the command line entry point.
"""
import pytest

import tarot_pipeline.__main__ as cli
from tarot_pipeline.config import ReaderConfig, reset_config


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    monkeypatch.setattr(cli, "_load_env_files", lambda: None)
    reset_config()
    yield
    reset_config()


def fake_session(error=None, calls=None):
    class FakeSession:
        def __init__(self, config):
            if calls is not None:
                calls.append(config)

        async def run(self):
            if error is not None:
                raise error

    return FakeSession


def test_flags_switch_features():
    args = cli.build_parser().parse_args(["--demo", "--debug", "--no-supervisor", "--no-enhance", "--scenario", "gentle"])

    config = cli.apply_args(ReaderConfig(), args)

    assert config.demo_mode is True
    assert config.debug is True
    assert config.supervisor_enabled is False
    assert config.enhance_reading is False
    assert config.scenario == "gentle"


def test_no_flags_keep_environment_settings():
    args = cli.build_parser().parse_args([])
    base = ReaderConfig(demo_mode=True, supervisor_enabled=False, scenario="night")

    config = cli.apply_args(base, args)

    assert config.demo_mode is True
    assert config.supervisor_enabled is False
    assert config.scenario == "night"


def test_main_runs_session(monkeypatch):
    calls = []
    monkeypatch.setattr(cli, "ReadingSession", fake_session(calls=calls))

    assert cli.main(["--demo", "--text-logs"]) == 0
    assert calls[0].demo_mode is True


def test_main_exits_1_on_fatal_error(monkeypatch):
    monkeypatch.setattr(cli, "ReadingSession", fake_session(RuntimeError("boom")))

    assert cli.main(["--demo"]) == cli.EXIT_ERROR


def test_main_exits_130_on_ctrl_c(monkeypatch):
    monkeypatch.setattr(cli, "ReadingSession", fake_session(KeyboardInterrupt()))

    assert cli.main(["--demo"]) == cli.EXIT_INTERRUPTED
