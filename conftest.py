"""
Root conftest.py for pytest configuration

This file handles:
1. Marker registration
2. Automatic marker inheritance based on test location
"""
from pathlib import Path

import pytest

DOMAIN_MARKERS = {
    "d1_catalog": "Catalog tests",
    "d2_checkout": "Checkout and payment link tests",
    "d3_webhooks": "Stripe webhook tests",
    "d4_downloads": "Download token tests",
    "d5_fulfillment": "Fulfillment email tests",
}

OTHER_MARKERS = {
    "unit": "Fast isolated tests",
    "integration": "Tests that exercise the HTTP app end to end",
    "slow": "Tests that sleep or wait on time windows",
}


def pytest_configure(config):
    """Register domain and test type markers"""
    for marker_name, description in {**DOMAIN_MARKERS, **OTHER_MARKERS}.items():
        config.addinivalue_line("markers", f"{marker_name}: {description}")


def pytest_collection_modifyitems(config, items):
    """Apply the test type and domain markers from each test's directory"""
    for item in items:
        parts = Path(str(item.fspath)).parts
        if "unit" in parts and not item.get_closest_marker("unit"):
            item.add_marker(pytest.mark.unit)
        for domain in DOMAIN_MARKERS:
            if domain in parts:
                item.add_marker(getattr(pytest.mark, domain))
