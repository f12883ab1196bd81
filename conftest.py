"""
Pytest configuration for the xrdeploy test suite.

This configuration enables the --full flag to run integration tests, which
need a real Android SDK/NDK installation.
"""

import pytest


def pytest_addoption(parser):
    """Add custom command-line options."""
    parser.addoption(
        "--full",
        action="store_true",
        default=False,
        help="Run full test suite including integration tests (needs Android SDK)",
    )


def pytest_configure(config):
    """Register markers and widen the selection under --full."""
    config.addinivalue_line("markers", "integration: needs a real Android SDK/NDK")
    if config.getoption("--full"):
        # Remove the default marker expression that excludes integration tests
        markexpr = config.getoption("-m", "")
        if markexpr == "not integration":
            config.option.markexpr = ""


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --full is given."""
    if config.getoption("--full"):
        return
    skip_integration = pytest.mark.skip(reason="needs --full")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)
