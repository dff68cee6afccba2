from pathlib import Path

import pytest
from pydantic import ValidationError

from shared.config.config_loader import expand_env, load_config, parse_config
from shared.config.schema import RiskConfig

ROOT = Path(__file__).resolve().parents[1]


def _write(tmp_path, text: str) -> str:
    path = tmp_path / "config.yml"
    path.write_text(text, encoding="utf-8")
    return str(path)


def test_repo_config_loads():
    cfg = load_config(str(ROOT / "config" / "config.yml"), load_env=False)
    assert cfg.market_id == "0"
    assert cfg.venue.type == "paper"
    assert cfg.risk.period == 21
    assert cfg.risk.max_window == 90
    assert cfg.risk.entry_threshold == 2.0
    assert cfg.scheduler.interval_s == 5.0


def test_defaults_fill_missing_sections(tmp_path):
    cfg = load_config(_write(tmp_path, "market_id: 7\n"), load_env=False)
    assert cfg.market_id == "7"
    assert cfg.mode == "paper"
    assert cfg.risk == RiskConfig()
    assert cfg.risk.version == "ema-v2"


def test_unknown_key_suggests_fix(tmp_path):
    path = _write(tmp_path, "market_id: 0\nrisk:\n  entry_treshold: 2.5\n")
    with pytest.raises(ValueError, match="did you mean 'entry_threshold'"):
        load_config(path, load_env=False)


def test_missing_market_id_rejected(tmp_path):
    with pytest.raises(ValueError, match="market_id"):
        load_config(_write(tmp_path, "mode: paper\n"), load_env=False)


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yml"))


def test_env_placeholders_expanded(tmp_path, monkeypatch):
    monkeypatch.setenv("PERP_TEST_KEY", "abc")
    monkeypatch.setenv("PERP_TEST_SECRET", "xyz")
    path = _write(
        tmp_path,
        "market_id: SOL-PERP\n"
        "mode: live\n"
        "venue:\n"
        "  type: ccxt\n"
        "  api_key: ${PERP_TEST_KEY}\n"
        "  api_secret: ${PERP_TEST_SECRET}\n",
    )
    cfg = load_config(path, load_env=False)
    assert cfg.venue.api_key == "abc"
    assert cfg.venue.api_secret == "xyz"


def test_missing_env_var_rejected(monkeypatch):
    monkeypatch.delenv("PERP_NOT_SET", raising=False)
    with pytest.raises(ValueError, match="PERP_NOT_SET"):
        expand_env({"venue": {"api_key": "${PERP_NOT_SET}"}})


def test_dotenv_next_to_config_is_loaded(tmp_path, monkeypatch):
    monkeypatch.delenv("PERP_DOTENV_KEY", raising=False)
    (tmp_path / ".env").write_text("PERP_DOTENV_KEY=from-dotenv\n", encoding="utf-8")
    path = _write(tmp_path, "market_id: 0\nvenue:\n  type: ccxt\n  api_key: ${PERP_DOTENV_KEY}\n")
    cfg = load_config(path)
    assert cfg.venue.api_key == "from-dotenv"
    monkeypatch.delenv("PERP_DOTENV_KEY", raising=False)


def test_live_mode_requires_exchange_venue():
    with pytest.raises(ValueError, match="mode=live"):
        parse_config({"market_id": "0", "mode": "live"})


def test_mode_is_normalized():
    assert parse_config({"market_id": "0", "mode": "DRY_RUN"}).mode == "dry-run"


@pytest.mark.parametrize(
    "overrides",
    [
        {"period": 1},
        {"period": 30, "max_window": 20},
        {"exit_threshold": 2.5},
        {"risk_per_trade": 0.0},
        {"max_loss_fraction": 1.5},
        {"leverage": 0},
        {"size_decimals": -1},
    ],
)
def test_invalid_risk_ranges(overrides):
    with pytest.raises(ValueError):
        parse_config({"market_id": "0", "risk": overrides})


def test_risk_config_is_frozen():
    cfg = RiskConfig()
    with pytest.raises(ValidationError):
        cfg.period = 5


def test_scheduler_interval_must_be_positive():
    with pytest.raises(ValueError):
        parse_config({"market_id": "0", "scheduler": {"interval_s": 0}})
