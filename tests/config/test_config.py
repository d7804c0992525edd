"""
Tests for configuration loading.

Covers the bundled default set, path resolution, strict key checking,
value validation, caching and the bootstrap entrypoint.
"""

import textwrap
from decimal import Decimal

import pytest
from sqlalchemy import func, select

import ledger_kernel.db.engine as engine_module
from ledger_config import (
    CONFIG_PATH_ENV,
    OfflineSettings,
    clear_config_cache,
    get_active_config,
    resolve_config_path,
)
from ledger_kernel.exceptions import ConfigurationError
from ledger_kernel.models.account import Account
from ledger_kernel.services.retry import RetryPolicy
from ledger_services.bootstrap import init_ledger


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    monkeypatch.delenv(CONFIG_PATH_ENV, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def write_config(tmp_path):
    def _write(body: str, name: str = "ledger.yaml"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(body))
        return path

    return _write


class TestDefaultConfig:
    def test_bundled_set_loads(self):
        settings = get_active_config()

        assert settings.config_id == "default"
        assert settings.version == 1
        assert len(settings.checksum) == 64
        assert settings.policy.minimum_payment_rate == Decimal("0.15")
        assert settings.policy.enforce_credit_limit is True
        assert settings.policy.chart.asset_codes["checking"] == "1.01.02"
        assert settings.policy.chart.credit_liability_code == "2.01.01"
        assert settings.policy.limits.max_installments == 72
        assert settings.retry == RetryPolicy()
        assert settings.offline.max_attempts == 5
        assert settings.logging.level == "INFO"

    def test_explicit_path_wins_over_environment(self, monkeypatch, write_config):
        env_path = write_config("config_id: from-env\n", "env.yaml")
        arg_path = write_config("config_id: from-arg\n", "arg.yaml")
        monkeypatch.setenv(CONFIG_PATH_ENV, str(env_path))

        assert resolve_config_path(arg_path) == arg_path
        assert get_active_config(arg_path).config_id == "from-arg"
        assert get_active_config().config_id == "from-env"


class TestCustomConfig:
    def test_missing_sections_use_defaults(self, write_config):
        path = write_config("""
            config_id: minimal
            version: 3
        """)

        settings = get_active_config(path)

        assert settings.config_id == "minimal"
        assert settings.version == 3
        assert settings.offline == OfflineSettings()
        assert settings.policy.chart.default_expense_code == "5.01.99"

    def test_overrides_are_applied(self, write_config):
        path = write_config("""
            config_id: tuned
            ledger:
              chart_of_accounts:
                asset_codes:
                  savings: "1.01.09"
              limits:
                max_installments: 24
              minimum_payment_rate: "0.2"
              enforce_credit_limit: false
            retry:
              max_retries: 6
            offline:
              max_attempts: 2
            logging:
              level: debug
        """)

        settings = get_active_config(path)

        assert settings.policy.chart.asset_codes["savings"] == "1.01.09"
        assert settings.policy.chart.asset_codes["checking"] == "1.01.02"
        assert settings.policy.limits.max_installments == 24
        assert settings.policy.minimum_payment_rate == Decimal("0.2")
        assert settings.policy.enforce_credit_limit is False
        assert settings.retry.max_retries == 6
        assert settings.offline.max_attempts == 2
        assert settings.logging.level == "DEBUG"

    def test_database_url_environment_override(self, monkeypatch, write_config):
        path = write_config("""
            config_id: db
            database:
              url: "sqlite:///from-file.db"
        """)
        monkeypatch.setenv("DATABASE_URL", "sqlite:///from-env.db")

        assert get_active_config(path).database.url == "sqlite:///from-env.db"


class TestInvalidConfig:
    @pytest.mark.parametrize(
        "body, fragment",
        [
            ("config_id: x\nledgr: {}\n", "unknown key(s) in config: ledgr"),
            ("config_id: x\nledger:\n  limits:\n    max_amout: 5\n", "max_amout"),
            ("config_id: x\nledger:\n  minimum_payment_rate: '1.5'\n", "between 0 and 1"),
            ("config_id: x\nledger:\n  limits:\n    max_installments: 1\n", "must be >= 2"),
            ("config_id: x\nretry:\n  max_retries: three\n", "must be an integer"),
            ("config_id: x\nretry:\n  multiplier: 0.5\n", "must be >= 1.0"),
            ("config_id: x\noffline:\n  max_attempts: 0\n", "must be >= 1"),
            ("config_id: x\nlogging:\n  level: LOUD\n", "logging.level"),
            ("config_id: x\ndatabase:\n  echo: 'yes'\n", "true or false"),
            (
                "config_id: x\nledger:\n  chart_of_accounts:\n    asset_codes:\n"
                "      credit: '1.09'\n",
                "credit",
            ),
            ("version: 1\n", "config_id"),
            ("- just\n- a list\n", "top level must be a mapping"),
        ],
    )
    def test_rejected(self, write_config, body, fragment):
        path = write_config(body)

        with pytest.raises(ConfigurationError) as exc_info:
            get_active_config(path)

        assert fragment in str(exc_info.value)
        assert exc_info.value.source == str(path.resolve())

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            get_active_config(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, write_config):
        path = write_config("config_id: [unterminated\n")
        with pytest.raises(ConfigurationError, match="invalid YAML"):
            get_active_config(path)


class TestCaching:
    def test_same_path_is_cached(self, write_config):
        path = write_config("config_id: cached\n")
        assert get_active_config(path) is get_active_config(path)

    def test_refresh_rereads_file(self, write_config):
        path = write_config("config_id: before\n")
        get_active_config(path)
        path.write_text("config_id: after\n")

        assert get_active_config(path).config_id == "before"
        assert get_active_config(path, refresh=True).config_id == "after"

    def test_clear_cache(self, write_config):
        path = write_config("config_id: before\n")
        first = get_active_config(path)
        path.write_text("config_id: after\n")
        clear_config_cache()

        second = get_active_config(path)

        assert second is not first
        assert second.checksum != first.checksum

    def test_load_is_traced(self, write_config, captured_logs):
        path = write_config("config_id: traced\nversion: 7\n")

        get_active_config(path)

        trace = next(r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE")
        assert trace["config_id"] == "traced"
        assert trace["config_version"] == 7
        assert trace["source"] == str(path.resolve())


class TestOfflineRetryPolicy:
    def test_maps_attempts_to_retries(self):
        settings = OfflineSettings(max_attempts=4, initial_delay_ms=500, max_delay_ms=8000)

        policy = settings.retry_policy()

        assert policy.max_retries == 3
        assert policy.max_attempts == 4
        assert policy.initial_delay_ms == 500
        assert policy.max_delay_ms == 8000


class TestBootstrap:
    def test_init_ledger_builds_session_factory(self, monkeypatch, tmp_path, write_config):
        # Keep the suite's engine in place once the test is over.
        monkeypatch.setattr(engine_module, "_engine", engine_module._engine)
        monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)
        path = write_config(f"""
            config_id: boot
            database:
              url: "sqlite:///{tmp_path / 'boot.db'}"
        """)

        settings, factory = init_ledger(path, create_schema=True)
        try:
            with engine_module.session_scope(factory) as s:
                count = s.execute(select(func.count()).select_from(Account)).scalar_one()
        finally:
            engine_module.get_engine().dispose()

        assert settings.config_id == "boot"
        assert count == 0
