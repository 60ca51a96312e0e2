import pytest

from meshlink.config import ServiceSettings, headless_requested
from meshlink.logging_config import configure_logging

configure_logging()


def test_defaults_without_environment():
    settings = ServiceSettings.from_env({})

    assert settings.registration_url == "http://localhost:8000/register"
    assert settings.deformation_url == "http://localhost:8000/deform"
    assert settings.cleaning_url == "http://localhost:8001/clean"
    assert settings.voxel_size == pytest.approx(0.05)
    assert settings.timeout is None


def test_environment_overrides():
    settings = ServiceSettings.from_env(
        {
            "MESHLINK_CLEANING_URL": "http://cleaner:9000/clean",
            "MESHLINK_VOXEL_SIZE": "0.2",
            "MESHLINK_NUMBER_OF_MODES": "12",
            "MESHLINK_REQUEST_TIMEOUT": "30",
        }
    )

    assert settings.cleaning_url == "http://cleaner:9000/clean"
    assert settings.voxel_size == pytest.approx(0.2)
    assert settings.number_of_modes == 12
    assert settings.timeout == pytest.approx(30.0)


def test_malformed_number_names_variable():
    with pytest.raises(ValueError, match="MESHLINK_VOXEL_SIZE"):
        ServiceSettings.from_env({"MESHLINK_VOXEL_SIZE": "fine"})


def test_headless_flag():
    assert headless_requested({"MESHLINK_HEADLESS": "1"})
    assert not headless_requested({})
