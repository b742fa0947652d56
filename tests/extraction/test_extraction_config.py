from __future__ import annotations

import pytest

from readgraph.extraction.config import MAX_WINDOW_CONCURRENCY, ExtractionSettings, default_window_concurrency


def test_defaults_without_environment() -> None:
    settings = ExtractionSettings.from_env({"READGRAPH_WINDOW_CONCURRENCY": "2"})

    assert settings == ExtractionSettings()
    assert settings.batch_pages == 10


def test_environment_overrides() -> None:
    settings = ExtractionSettings.from_env(
        {
            "READGRAPH_WINDOW_MAX_CHARS": "4000",
            "READGRAPH_WINDOW_MAX_UNITS": " 6 ",
            "READGRAPH_WINDOW_CONCURRENCY": "1",
            "READGRAPH_MAX_BATCHES_PER_RUN": "3",
            "READGRAPH_MAX_RUN_SECONDS": "2.5",
        }
    )

    assert (settings.window_max_chars, settings.window_max_units) == (4000, 6)
    assert settings.window_concurrency == 1
    assert settings.max_batches_per_run == 3
    assert settings.max_run_seconds == 2.5


def test_window_concurrency_is_capped() -> None:
    settings = ExtractionSettings.from_env({"READGRAPH_WINDOW_CONCURRENCY": "16"})

    assert settings.window_concurrency == MAX_WINDOW_CONCURRENCY == 3


@pytest.mark.parametrize(
    "environ",
    [
        {"READGRAPH_WINDOW_MAX_CHARS": "lots"},
        {"READGRAPH_WINDOW_MAX_UNITS": "0"},
        {"READGRAPH_MAX_RUN_SECONDS": "-1"},
        {"READGRAPH_MAX_RUN_SECONDS": "soon"},
    ],
)
def test_invalid_values_raise(environ) -> None:
    with pytest.raises(ValueError):
        ExtractionSettings.from_env(environ)


def test_default_concurrency_scales_with_cores() -> None:
    assert default_window_concurrency(1) == 1
    assert default_window_concurrency(4) == 2
    assert default_window_concurrency(32) == 3
    assert default_window_concurrency(0) == 2
