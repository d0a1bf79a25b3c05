"""Lets the harness-style test_*(r) functions in test_ved.py run under pytest."""

import pytest

from test_ved import TestResult


@pytest.fixture
def r(request):
    return TestResult(request.node.name)
