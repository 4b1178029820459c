"""
Tests for the aggregator command line.
"""

import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from token_pipeline.models import StageName
from token_aggregator import cli
from token_aggregator.exceptions import ConfigurationError
from token_aggregator.models import RunStatus
from token_aggregator.storage import InMemoryAnalysisStore, SqlAlchemyAnalysisStore


@pytest.fixture
def clean_env(monkeypatch):
    """Environment without aggregator variables."""
    for name in list(os.environ):
        if name.startswith("TOKEN_AGG_"):
            monkeypatch.delenv(name)
    return monkeypatch


class TestParser:
    """Argument parsing."""

    def test_defaults(self):
        args = cli.create_parser().parse_args([])
        assert args.once is False
        assert args.dry_run is False
        assert args.config is None
        assert args.log_level == "INFO"
        assert args.log_format == "json"

    def test_flags(self):
        args = cli.create_parser().parse_args(
            ["--once", "--dry-run", "-c", "agg.yaml", "--interval", "60", "--max-tokens", "20"]
        )
        assert args.once and args.dry_run
        assert args.config == "agg.yaml"
        assert args.interval == 60.0
        assert args.max_tokens == 20


class TestBuildConfig:
    """Source precedence."""

    def test_cli_overrides_yaml(self, tmp_path):
        path = tmp_path / "agg.yaml"
        path.write_text("interval_seconds: 30\nmax_concurrent: 2\n")
        args = cli.create_parser().parse_args(["-c", str(path), "--max-concurrent", "9"])

        config = cli.build_config(args)

        assert config.interval_seconds == 30
        assert config.max_concurrent == 9

    def test_env_used_without_file(self, clean_env):
        clean_env.setenv("TOKEN_AGG_MAX_TOKENS_PER_RUN", "25")
        args = cli.create_parser().parse_args([])
        assert cli.build_config(args).max_tokens_per_run == 25

    def test_invalid_override(self, clean_env):
        args = cli.create_parser().parse_args(["--max-concurrent", "0"])
        with pytest.raises(ConfigurationError):
            cli.build_config(args)


class TestWiring:
    """Object graph construction."""

    def test_build_store(self, clean_env):
        config = cli.build_config(cli.create_parser().parse_args(["--database-url", "sqlite:///:memory:"]))

        assert isinstance(cli.build_store(config, dry_run=True), InMemoryAnalysisStore)
        store = cli.build_store(config, dry_run=False)
        assert isinstance(store, SqlAlchemyAnalysisStore)
        store.engine.dispose()

    def test_build_scheduler(self, clean_env):
        config = cli.build_config(cli.create_parser().parse_args(["--interval", "45"]))

        scheduler = cli.build_scheduler(config, InMemoryAnalysisStore())

        assert scheduler.config.interval_seconds == 45
        assert set(scheduler.pipeline.providers) == set(StageName)
        assert scheduler.pipeline.providers[StageName.ROUTING].name == "jupiter"
        assert scheduler.get_system_status()["rate_limits"]["solscan"]["max_requests"] == 200


class TestAsyncMain:
    """Exit codes."""

    def _scheduler(self, status):
        scheduler = MagicMock()
        scheduler.config.to_dict.return_value = {}
        run = MagicMock(status=status)
        scheduler.run_once = AsyncMock(return_value=run)
        scheduler.close = AsyncMock()
        return scheduler

    @pytest.mark.asyncio
    async def test_once_success(self, clean_env):
        scheduler = self._scheduler(RunStatus.COMPLETED)
        args = cli.create_parser().parse_args(["--once", "--dry-run"])

        with patch.object(cli, "build_scheduler", return_value=scheduler):
            code = await cli.async_main(args)

        assert code == 0
        scheduler.run_once.assert_awaited_once_with(trigger="manual")
        scheduler.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_once_failed_run(self, clean_env):
        scheduler = self._scheduler(RunStatus.FAILED)
        args = cli.create_parser().parse_args(["--once", "--dry-run"])

        with patch.object(cli, "build_scheduler", return_value=scheduler):
            assert await cli.async_main(args) == 1

    @pytest.mark.asyncio
    async def test_bad_config_exits_before_wiring(self, clean_env):
        args = cli.create_parser().parse_args(["--once", "--max-tokens", "0"])

        with patch.object(cli, "build_scheduler") as build:
            assert await cli.async_main(args) == 1
        build.assert_not_called()
