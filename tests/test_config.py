# tests/test_config.py
from __future__ import annotations

import logging

import pytest

from costbasis.config import DEFAULT_EPSILON, EngineConfig, load_config
from costbasis.logging_config import setup_logging


def test_load_config_defaults(monkeypatch):
    for var in ("COSTBASIS_DISCIPLINE", "COSTBASIS_STABLES", "COSTBASIS_EPSILON", "COSTBASIS_TIMEZONE"):
        monkeypatch.delenv(var, raising=False)

    cfg = load_config()
    assert cfg.discipline == "AVG"
    assert cfg.epsilon == DEFAULT_EPSILON
    assert cfg.is_stable("usdc")
    assert not cfg.is_stable("BTC")
    assert not cfg.is_stable(None)


def test_load_config_from_environment(monkeypatch):
    monkeypatch.setenv("COSTBASIS_DISCIPLINE", "lifo")
    monkeypatch.setenv("COSTBASIS_STABLES", "usd, pyusd")
    monkeypatch.setenv("COSTBASIS_EPSILON", "1e-12")
    monkeypatch.setenv("COSTBASIS_TIMEZONE", "Europe/Paris")

    cfg = load_config()
    assert cfg.discipline == "LIFO"
    assert cfg.stable_currencies == frozenset({"USD", "PYUSD"})
    assert cfg.epsilon == 1e-12
    assert cfg.timezone == "Europe/Paris"


def test_invalid_discipline_env(monkeypatch):
    monkeypatch.setenv("COSTBASIS_DISCIPLINE", "HIFO")
    with pytest.raises(ValueError):
        load_config()


def test_with_stables_replaces_set():
    cfg = EngineConfig().with_stables(["eur"])
    assert cfg.stable_currencies == frozenset({"EUR"})
    assert EngineConfig().with_stables(None) == EngineConfig()


def test_setup_logging_is_idempotent():
    logger = setup_logging(logging.DEBUG)
    setup_logging(logging.DEBUG)
    assert logger.name == "costbasis"
    assert len(logger.handlers) == 1
