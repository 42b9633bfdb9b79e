from unittest.mock import MagicMock

import pytest

import flood_analysis


@pytest.fixture
def fake_ee(monkeypatch):
    """Stand-in for the ee module so pipelines can be built without a session."""
    mock = MagicMock(name="ee")
    monkeypatch.setattr(flood_analysis, "ee", mock)
    return mock


@pytest.fixture
def rectangle():
    return {
        "type": "Polygon",
        "coordinates": [[
            [67.5, 25.5], [67.5, 27.5], [69.5, 27.5], [69.5, 25.5], [67.5, 25.5]
        ]],
    }
