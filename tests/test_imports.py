"""
Import checks for every package and module.
"""
import importlib

import pytest

import ip_run_gate

MODULES = [
    "ip_run_gate.api.app",
    "ip_run_gate.api.auth",
    "ip_run_gate.cli.main",
    "ip_run_gate.config.loader",
    "ip_run_gate.core.decision",
    "ip_run_gate.core.retention",
    "ip_run_gate.core.service",
    "ip_run_gate.sinks.warehouse",
    "ip_run_gate.sinks.webhooks",
    "ip_run_gate.storage.factory",
    "ip_run_gate.storage.gcs",
    "ip_run_gate.storage.local",
    "ip_run_gate.storage.models",
    "ip_run_gate.storage.repository",
]


def test_version():
    assert ip_run_gate.__version__ == "0.1.0"


@pytest.mark.parametrize("name", MODULES)
def test_module_imports(name):
    assert importlib.import_module(name).__name__ == name


@pytest.mark.parametrize("package", [
    "ip_run_gate.api",
    "ip_run_gate.cli",
    "ip_run_gate.config",
    "ip_run_gate.core",
    "ip_run_gate.sinks",
    "ip_run_gate.storage",
])
def test_package_exports_resolve(package):
    module = importlib.import_module(package)
    for name in getattr(module, "__all__", []):
        assert hasattr(module, name), f"{package} does not define {name}"


def test_api_exports_app_factory():
    from ip_run_gate.api import create_app
    from ip_run_gate.api.app import create_app as factory

    assert create_app is factory
