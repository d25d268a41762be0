from pathlib import Path

import pytest

from edgefetch.acquisition.config import AcquisitionConfig, default_cache_root
from edgefetch.acquisition.references import AliasTarget

_ENV_KEYS = (
    "EDGEFETCH_CACHE_ROOT",
    "EDGEFETCH_HUB_URL",
    "EDGEFETCH_REGISTRY",
    "EDGEFETCH_PREFER_SYSTEM",
    "EDGEFETCH_TOKEN",
    "HF_TOKEN",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    config = AcquisitionConfig()

    assert config.hub_url == "https://huggingface.co"
    assert config.timeout == (30.0, 60.0)
    assert config.token is None
    assert config.prefer_system_backend is False
    assert "smollm2-135m-instruct" in config.aliases


def test_xdg_cache_root(monkeypatch, tmp_path):
    monkeypatch.setattr("platform.system", lambda: "Linux")
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))

    assert default_cache_root() == tmp_path / "edgefetch" / "models"


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("EDGEFETCH_CACHE_ROOT", str(tmp_path / "models"))
    monkeypatch.setenv("EDGEFETCH_HUB_URL", "https://mirror.test")
    monkeypatch.setenv("EDGEFETCH_PREFER_SYSTEM", "yes")
    monkeypatch.setenv("HF_TOKEN", "  hf_secret  ")

    config = AcquisitionConfig.from_env()

    assert config.cache_root == tmp_path / "models"
    assert config.hub_url == "https://mirror.test"
    assert config.prefer_system_backend is True
    assert config.token == "hf_secret"


def test_dedicated_token_variable_wins(monkeypatch):
    monkeypatch.setenv("HF_TOKEN", "hf")
    monkeypatch.setenv("EDGEFETCH_TOKEN", "edge")

    assert AcquisitionConfig.from_env().token == "edge"


def test_token_is_not_in_repr():
    config = AcquisitionConfig(token="hf_secret")

    assert "hf_secret" not in repr(config)


def test_pyproject_table(tmp_path, caplog):
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(
        """
[tool.edgefetch]
cache_root = "~/models"
read_timeout = 5
variant_priority = ["Q8_0", "Q4_0"]
prefer_system_backend = true
surprise = 1

[tool.edgefetch.aliases]
"My-Model" = "org/real-model"
pinned = { model_id = "org/pinned", revision = "v1" }
"""
    )

    config = AcquisitionConfig.from_pyproject(pyproject)

    assert config.cache_root == Path("~/models").expanduser()
    assert config.timeout == (30.0, 5.0)
    assert config.variant_priority == ("Q8_0", "Q4_0")
    assert config.prefer_system_backend is True
    assert config.aliases["my-model"] == AliasTarget("org/real-model")
    assert config.aliases["pinned"] == AliasTarget("org/pinned", "v1")
    # Built-in aliases are kept alongside the configured ones
    assert "whisper.cpp" in config.aliases
    assert "surprise" in caplog.text


def test_missing_or_broken_pyproject_keeps_base(tmp_path):
    base = AcquisitionConfig(hub_url="https://base.test")
    broken = tmp_path / "pyproject.toml"
    broken.write_text("[tool.edgefetch\n")

    assert AcquisitionConfig.from_pyproject(tmp_path / "none.toml", base=base) is base
    assert AcquisitionConfig.from_pyproject(broken, base=base) is base


def test_environment_layers_over_pyproject(monkeypatch, tmp_path):
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text('[tool.edgefetch]\nhub_url = "https://file.test"\n')
    monkeypatch.setenv("EDGEFETCH_HUB_URL", "https://env.test")

    config = AcquisitionConfig.from_env(
        base=AcquisitionConfig.from_pyproject(pyproject)
    )

    assert config.hub_url == "https://env.test"
