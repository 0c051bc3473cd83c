"""Shared fixtures for alto-agent tests."""

import io
import os
from unittest.mock import MagicMock

import pytest
from rich.console import Console

import alto_agent.config as config_module


@pytest.fixture(autouse=True)
def isolated_config(tmp_path_factory, monkeypatch):
    """Keep tests away from the real ~/.alto and ALTO_* variables."""
    home = tmp_path_factory.mktemp("alto_home")
    monkeypatch.setattr(config_module, "CONFIG_DIR", home)
    monkeypatch.setattr(config_module, "CONFIG_FILE", home / "config.yml")
    for name in list(os.environ):
        if name.startswith("ALTO_"):
            monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def tmp_dir(tmp_path):
    """Provide a temporary directory and cd into it."""
    orig = os.getcwd()
    os.chdir(tmp_path)
    yield tmp_path
    os.chdir(orig)


@pytest.fixture
def sample_config_data():
    """Minimal .alto.conf.yml data dict."""
    return {
        "base-url": "http://127.0.0.1:9000/v1/",
        "model": "qwen-test",
        "api-key-env": "ALTO_TEST_KEY",
        "request-timeout": 120,
        "command-timeout": 30,
        "auto-confirm": False,
        "max-iterations": 5,
        "stop-on-tool-error": False,
        "reasoning-display": "off",
        "show-stats": False,
        "verbose": False,
    }


@pytest.fixture
def mock_console():
    """A mock Rich Console that silently accepts all print calls."""
    c = MagicMock()
    c.print = MagicMock()
    c.input = MagicMock(return_value="n")
    return c


@pytest.fixture
def text_console():
    """A real Console writing plain text to a buffer; read it with ``.file.getvalue()``."""
    return Console(file=io.StringIO(), force_terminal=False, color_system=None,
                   width=200, highlight=False)
