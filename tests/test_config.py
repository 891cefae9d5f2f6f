"""
Test suite for configuration, logging and the CLI

Covers:
  - TOML loading, defaults and environment overrides
  - Validation errors
  - Logger level changes and terminal-safe formatting
  - Read-only CLI commands that need no network
"""

import logging

import pytest
from click.testing import CliRunner

from whispermarket.cli import _format_last_update, cli
from whispermarket.client import MarketListing
from whispermarket.config import ClientConfig, ProgramConfig, load_config
from whispermarket.exceptions import ConfigurationError
from whispermarket.market.metadata import MarketMetadata
from whispermarket.market.registry import MarketRegistryEntry
from whispermarket.constants import LOG_DATE_FORMAT, LOG_FORMAT
from whispermarket.logger import LogManager, TerminalSafeFormatter

ENV_VARS = (
    "WHISPER_MAPPING_API_URL",
    "WHISPER_RPC_URL",
    "WHISPER_NETWORK",
    "WHISPER_PROGRAM_ID",
    "WHISPER_POSITION_PROGRAM_ALIASES",
    "WHISPER_MAX_CONCURRENT",
    "WHISPER_TICK_INTERVAL",
    "WHISPER_MAPPING_TIMEOUT",
    "WHISPER_REGISTRY_TTL",
    "WHISPER_MARKET_STATE_TTL",
    "WHISPER_DISCOVERY_RETRIES",
    "WHISPER_DISCOVERY_MAX_PAGES",
    "WHISPER_SELECTION_POLICY",
    "WHISPER_SLIPPAGE_BPS",
    "WHISPER_SUBMIT_TIMEOUT",
    "WHISPER_CONFIG",
)

SAMPLE_TOML = """
[network]
mapping_api_url = "https://explorer.example/v1/mainnet"
network_name = "mainnet"

[program]
program_id = "prediction_market_v2.aleo"
position_program_aliases = ["prediction_market_v1.aleo"]

[mapping_client]
max_concurrent = 2
tick_interval = 0.5

[transactions]
selection_policy = "smallest_sufficient"
slippage_bps = 250
"""


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# ============================================================================
#  LOADING
# ============================================================================

class TestClientConfig:

    def test_defaults_are_valid(self):
        cfg = ClientConfig()
        assert cfg.validate()
        assert cfg.program.program_id == "prediction_market_testing.aleo"
        assert cfg.mapping_client.max_concurrent == 4
        assert cfg.mapping_client.tick_interval == 0.25
        assert cfg.transactions.selection_policy == "first_sufficient"

    def test_missing_file_uses_defaults(self, tmp_path):
        cfg = ClientConfig.from_file(str(tmp_path / "absent.toml"))
        assert cfg.to_dict() == ClientConfig().to_dict()

    def test_from_file(self, tmp_path):
        path = tmp_path / "whisper.toml"
        path.write_text(SAMPLE_TOML)
        cfg = ClientConfig.from_file(str(path))

        assert cfg.network.mapping_api_url == "https://explorer.example/v1/mainnet"
        assert cfg.network.network_name == "mainnet"
        assert cfg.program.position_programs == ["prediction_market_v2.aleo", "prediction_market_v1.aleo"]
        assert cfg.mapping_client.max_concurrent == 2
        assert cfg.mapping_client.tick_interval == 0.5
        assert cfg.mapping_client.timeout == 10.0
        assert cfg.transactions.slippage_bps == 250
        assert cfg.validate()

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "whisper.toml"
        path.write_text("[network\nrpc_url = ")
        with pytest.raises(ConfigurationError, match="Invalid TOML"):
            ClientConfig.from_file(str(path))

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "whisper.toml"
        path.write_text(SAMPLE_TOML)
        monkeypatch.setenv("WHISPER_PROGRAM_ID", "other_market.aleo")
        monkeypatch.setenv("WHISPER_MAX_CONCURRENT", "8")
        monkeypatch.setenv("WHISPER_POSITION_PROGRAM_ALIASES", "a.aleo, b.aleo,")
        monkeypatch.setenv("WHISPER_SUBMIT_TIMEOUT", "30")

        cfg = ClientConfig.from_file(str(path))
        assert cfg.program.program_id == "other_market.aleo"
        assert cfg.program.position_programs == ["other_market.aleo", "a.aleo", "b.aleo"]
        assert cfg.mapping_client.max_concurrent == 8
        assert cfg.transactions.submit_timeout == 30.0

    def test_load_config_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.toml"
        path.write_text(SAMPLE_TOML)
        monkeypatch.setenv("WHISPER_CONFIG", str(path))
        assert load_config().network.network_name == "mainnet"

    def test_position_programs_dedupe(self):
        program = ProgramConfig(
            program_id="m.aleo",
            position_program_aliases=["m.aleo", "legacy.aleo", "legacy.aleo"],
        )
        assert program.position_programs == ["m.aleo", "legacy.aleo"]

    def test_to_dict_sections(self):
        data = ClientConfig().to_dict()
        assert set(data) == {"network", "program", "mapping_client", "cache", "discovery", "transactions"}
        assert data["cache"]["market_state_ttl"] == 45


class TestValidation:

    @pytest.mark.parametrize("mutate, message", [
        (lambda c: setattr(c.network, "mapping_api_url", "ftp://x"), "mapping_api_url"),
        (lambda c: setattr(c.network, "rpc_url", "localhost"), "rpc_url"),
        (lambda c: setattr(c.program, "program_id", "market"), "program_id"),
        (lambda c: setattr(c.mapping_client, "max_concurrent", 0), "max_concurrent"),
        (lambda c: setattr(c.mapping_client, "tick_interval", -1), "tick_interval"),
        (lambda c: setattr(c.mapping_client, "timeout", 0), "timeout"),
        (lambda c: setattr(c.cache, "registry_ttl", -5), "TTL"),
        (lambda c: setattr(c.discovery, "page_size", 0), "page_size"),
        (lambda c: setattr(c.discovery, "retries", 0), "retries"),
        (lambda c: setattr(c.transactions, "slippage_bps", 10_001), "slippage_bps"),
        (lambda c: setattr(c.transactions, "selection_policy", "random"), "selection_policy"),
    ])
    def test_rejects(self, mutate, message):
        cfg = ClientConfig()
        mutate(cfg)
        with pytest.raises(ConfigurationError, match=message):
            cfg.validate()


# ============================================================================
#  LOGGING
# ============================================================================

class TestLogging:

    def test_singleton(self):
        assert LogManager() is LogManager()

    def test_set_level(self):
        manager = LogManager()
        package_logger = logging.getLogger("whispermarket")
        previous = package_logger.level
        try:
            manager.set_level("DEBUG")
            assert manager.is_configured
            assert package_logger.level == logging.DEBUG
            assert all(h.level == logging.DEBUG for h in package_logger.handlers)
        finally:
            manager.set_level(logging.getLevelName(previous))

    def test_formatter_strips_escape_sequences(self):
        formatter = TerminalSafeFormatter(fmt="%(message)s")
        record = logging.LogRecord(
            name="whispermarket.test", level=logging.INFO, pathname="", lineno=0,
            msg="record \x1b[31mred\x1b[0m\x07 done", args=(), exc_info=None,
        )
        output = formatter.format(record)
        assert "\x1b" not in output
        assert "\x07" not in output
        assert "red" in output

    def test_invalid_log_format_falls_back(self):
        assert LogManager.validate_log_format("(name)s broken") != "(name)s broken"
        assert LogManager.validate_log_format("%(levelname)s %(bogus)s") != "%(levelname)s %(bogus)s"
        assert LogManager.validate_log_format("") == str(LOG_FORMAT.default())

    def test_valid_log_format_kept(self):
        assert LogManager.validate_log_format("%(name)s: %(message)s") == "%(name)s: %(message)s"

    def test_configured_formatter_uses_utc_date_format(self):
        manager = LogManager()
        manager.get_logger("whispermarket.test")
        formatters = [h.formatter for h in logging.getLogger("whispermarket").handlers]
        assert formatters
        for formatter in formatters:
            assert isinstance(formatter, TerminalSafeFormatter)
            assert formatter.datefmt == f"{LOG_DATE_FORMAT} UTC"


# ============================================================================
#  CLI
# ============================================================================

class TestCli:

    def test_fee_single(self):
        result = CliRunner().invoke(cli, ["fee", "transfer_public"])
        assert result.exit_code == 0
        assert "transfer_public" in result.output
        assert "44060" in result.output

    def test_fee_all(self):
        result = CliRunner().invoke(cli, ["fee"])
        assert result.exit_code == 0
        assert "open_position_private" in result.output
        assert "join" in result.output

    def test_fee_unknown(self):
        result = CliRunner().invoke(cli, ["fee", "mint_everything"])
        assert result.exit_code != 0
        assert "No fee" in result.output

    def test_quote_requires_side(self):
        result = CliRunner().invoke(cli, ["quote", "123field", "--amount", "10"])
        assert result.exit_code != 0
        assert "--side" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    @pytest.mark.parametrize("value, shown", [
        (None, "-"),
        (0, "0¢"),
        (6500, "65¢"),
        (10_000, "100¢"),
        (1_700_000_000, "1700000000"),
    ])
    def test_last_update_display(self, value, shown):
        assert _format_last_update(value) == shown

    def test_markets_table_shows_raw_update(self, monkeypatch):
        listings = [
            MarketListing(
                MarketRegistryEntry("111field", 0, last_price_update=1_700_000_000),
                MarketMetadata("111field", "Rain"),
            ),
            MarketListing(
                MarketRegistryEntry("222field", 0, last_price_update=6500),
                MarketMetadata("222field", "Snow"),
            ),
        ]
        monkeypatch.setattr("whispermarket.cli._run", lambda config_path, action: listings)
        result = CliRunner().invoke(cli, ["markets"])
        assert result.exit_code == 0
        assert "Last update" in result.output
        assert "1700000000" in result.output
        assert "65¢" in result.output
        assert "17000000¢" not in result.output
