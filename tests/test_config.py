"""Tests for settings, logging setup and the run context."""

import logging
from pathlib import Path

import pytest
from pydantic import ValidationError
from rich.logging import RichHandler

from diskscope.cache import SubtreeCache
from diskscope.config import Settings
from diskscope.context import RunContext, open_context
from diskscope.log import LOGGER_NAME, setup_logging, teardown_logging


class TestSettings:
    def test_defaults(self):
        settings = Settings.from_env(environ={})
        assert settings.dry_run is False
        assert settings.debug is False
        assert settings.concurrency is None
        assert settings.cache_max_entries == 50_000

    def test_environment(self):
        settings = Settings.from_env(
            environ={
                "DISKSCOPE_DRY_RUN": "1",
                "DISKSCOPE_DEBUG": "yes",
                "DISKSCOPE_WORKERS": "4",
                "DISKSCOPE_OPERATION_LOG": "/tmp/ops.jsonl",
            }
        )
        assert settings.dry_run is True
        assert settings.debug is True
        assert settings.concurrency == 4
        assert settings.operation_log == Path("/tmp/ops.jsonl")

    def test_false_flag(self):
        assert Settings.from_env(environ={"DISKSCOPE_DRY_RUN": "0"}).dry_run is False

    def test_overrides_win(self):
        settings = Settings.from_env(environ={"DISKSCOPE_WORKERS": "4"}, concurrency=8)
        assert settings.concurrency == 8

    def test_none_override_ignored(self):
        settings = Settings.from_env(environ={"DISKSCOPE_DRY_RUN": "true"}, dry_run=None)
        assert settings.dry_run is True

    def test_invalid_concurrency(self):
        with pytest.raises(ValidationError):
            Settings(concurrency=0)

    def test_invalid_interval(self):
        with pytest.raises(ValidationError):
            Settings(tick_interval=0)

    def test_frozen(self):
        settings = Settings()
        with pytest.raises(ValidationError):
            settings.dry_run = True


class TestLogging:
    def test_setup_and_teardown(self):
        logger = setup_logging(debug=True)
        try:
            assert logger.name == LOGGER_NAME
            assert logger.level == logging.DEBUG
            assert any(isinstance(h, RichHandler) for h in logger.handlers)
        finally:
            teardown_logging(logger)
        assert not any(isinstance(h, RichHandler) for h in logger.handlers)

    def test_quiet_by_default(self):
        logger = setup_logging()
        try:
            assert logger.level == logging.WARNING
        finally:
            teardown_logging(logger)


class TestRunContext:
    def test_cache_sized_from_settings(self):
        ctx = RunContext(settings=Settings(cache_max_entries=10))
        assert isinstance(ctx.cache, SubtreeCache)
        assert ctx.cache.max_entries == 10

    def test_close_clears_cache(self):
        from diskscope.models import Identity

        with open_context(Settings()) as ctx:
            ctx.cache.put("/x", Identity(device=1, inode=1), 1.0, 10, 1)
            assert len(ctx.cache) == 1
        assert ctx.closed
        assert len(ctx.cache) == 0
