import logging

import pytest

import data_loader
import main
from logging_utils import configure_logging, reset_logging

BASE = 1_704_067_200


@pytest.fixture(autouse=True)
def _clean_logging():
    yield
    reset_logging()


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    rows = ["time,open,high,low,close,volume"]
    for i in range(240):
        price = 100 + (i % 20) - (i % 7) * 0.5
        rows.append(f"{BASE + i * 60},{price},{price + 1.5},{price - 1.5},{price + 0.5},1")
    (tmp_path / "BTCUSDT_1m.csv").write_text("\n".join(rows) + "\n")
    monkeypatch.setattr(data_loader, "DATA_DIR", tmp_path)
    return tmp_path


def _common(tmp_path):
    return ["--symbol", "BTCUSDT", "--htf", "15m", "--mtf", "5m", "--ltf", "1m",
            "--range", "1d", "--settings", str(tmp_path / "settings.json")]


def test_backtest_command_prints_summary(data_dir, capsys):
    assert main.main(["--log-level", "WARNING", "backtest", *_common(data_dir)]) == 0

    assert "Backtest Results - BTCUSDT" in capsys.readouterr().out


def test_analyze_command(data_dir, capsys):
    assert main.main(["--log-level", "WARNING", "analyze", *_common(data_dir)]) == 0

    assert "Signals:" in capsys.readouterr().out


def test_optimize_rejects_oversized_grid(data_dir, capsys):
    argv = [
        "--log-level", "WARNING", "optimize", *_common(data_dir),
        "--sweep", "htf_swing_lookback=1:30:1",
        "--sweep", "ltf_choch_lookback=1:20:1",
    ]

    assert main.main(argv) == 2
    assert "Too many combinations to test: 600" in capsys.readouterr().err


def test_optimize_saves_best_config(data_dir, monkeypatch, capsys):
    best_file = data_dir / "best.json"
    monkeypatch.setattr(main.config, "BEST_CONFIG_FILE", best_file)
    argv = [
        "--log-level", "WARNING", "optimize", *_common(data_dir),
        "--sweep", "rr_ratio=1:2:1", "--apply",
    ]

    assert main.main(argv) == 0

    assert "OPTIMIZATION RESULTS" in capsys.readouterr().out
    assert best_file.exists()
    assert (data_dir / "settings.json").exists()


def test_invalid_sweep_name_fails(data_dir):
    argv = ["--log-level", "WARNING", "optimize", *_common(data_dir), "--sweep", "leverage=1:2:1"]

    assert main.main(argv) == 1


def test_missing_data_fails(tmp_path, monkeypatch):
    monkeypatch.setattr(data_loader, "DATA_DIR", tmp_path / "empty")

    assert main.main(["--log-level", "WARNING", "backtest", *_common(tmp_path)]) == 1


def test_configure_logging_does_not_duplicate_handlers(tmp_path):
    root = logging.getLogger()
    before = len(root.handlers)
    log_file = str(tmp_path / "logs" / "smc.log")

    configure_logging("DEBUG", log_file)
    configure_logging("DEBUG", log_file)

    assert len(root.handlers) == before + 2
    assert root.level == logging.DEBUG
    assert (tmp_path / "logs").is_dir()

    reset_logging()
    assert len(root.handlers) == before
