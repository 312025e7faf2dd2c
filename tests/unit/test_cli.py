"""Unit tests for CLI argument parsing and commands."""
from __future__ import annotations

import argparse
from pathlib import Path

import pytest

from lendhub.cli import _run, build_parser, print_rates
from lendhub.config import AppConfig
from lendhub.protocol import LendingProtocol


class TestBuildParser:
    def test_rates_command(self) -> None:
        args = build_parser().parse_args(["rates"])
        assert args.command == "rates"
        assert args.points == 11

    def test_rates_points(self) -> None:
        args = build_parser().parse_args(["rates", "--points", "5"])
        assert args.points == 5

    def test_check_command(self) -> None:
        args = build_parser().parse_args(["check"])
        assert args.command == "check"

    def test_keeper_command_default_interval(self) -> None:
        args = build_parser().parse_args(["keeper"])
        assert args.command == "keeper"
        assert args.interval is None

    def test_keeper_command_custom_interval(self) -> None:
        args = build_parser().parse_args(["keeper", "60"])
        assert args.interval == 60

    def test_config_flag(self) -> None:
        args = build_parser().parse_args(["--config", "/tmp/c.yaml", "check"])
        assert args.config == "/tmp/c.yaml"

    def test_log_level_flag(self) -> None:
        args = build_parser().parse_args(["--log-level", "DEBUG", "check"])
        assert args.log_level == "DEBUG"

    def test_no_command(self) -> None:
        args = build_parser().parse_args([])
        assert args.command is None


class TestCommands:
    def test_print_rates(
        self,
        sample_app_config: AppConfig,
        protocol: LendingProtocol,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        print_rates(sample_app_config, protocol, 3)
        out = capsys.readouterr().out
        assert "CORE" in out
        assert "USDC" in out
        # utilization 0%, 50%, 100%
        assert "2.00%" in out
        assert "4.50%" in out
        assert "11.00%" in out

    @pytest.mark.asyncio
    async def test_check_with_no_positions(
        self, sample_yaml_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        args = argparse.Namespace(command="check", config=str(sample_yaml_path), log_level="INFO")
        await _run(args)
        assert "No liquidatable positions." in capsys.readouterr().out
