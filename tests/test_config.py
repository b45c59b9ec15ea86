"""Tests for the precision configuration system."""

import os
import re
import subprocess
import sys
from importlib import metadata
from types import SimpleNamespace

import pytest

import mvglm_posterior._config as _cfg
from mvglm_posterior._config import apply_precision, get_precision, set_precision


@pytest.fixture
def recorded_updates(monkeypatch):
    """Record jax.config.update calls instead of flipping global precision."""
    calls = []
    fake_config = SimpleNamespace(update=lambda *args: calls.append(args))
    monkeypatch.setattr(_cfg, "jax", SimpleNamespace(config=fake_config))
    return calls


class TestGetPrecision:
    """Tests for get_precision() resolution order."""

    def setup_method(self):
        _cfg._precision_override = None
        os.environ.pop("MVGLM_POSTERIOR_PRECISION", None)

    def teardown_method(self):
        _cfg._precision_override = None
        os.environ.pop("MVGLM_POSTERIOR_PRECISION", None)

    def test_default_is_float64(self):
        assert get_precision() == "float64"

    def test_env_var_selects_float32(self):
        os.environ["MVGLM_POSTERIOR_PRECISION"] = "float32"
        assert get_precision() == "float32"

    def test_env_var_case_insensitive(self):
        os.environ["MVGLM_POSTERIOR_PRECISION"] = " Float32 "
        assert get_precision() == "float32"

    def test_unknown_env_value_falls_back_to_default(self):
        os.environ["MVGLM_POSTERIOR_PRECISION"] = "float16"
        assert get_precision() == "float64"

    def test_programmatic_override_wins_over_env(self):
        os.environ["MVGLM_POSTERIOR_PRECISION"] = "float32"
        _cfg._precision_override = "float64"
        assert get_precision() == "float64"

    def test_auto_restores_resolution_order(self):
        os.environ["MVGLM_POSTERIOR_PRECISION"] = "float32"
        _cfg._precision_override = "auto"
        assert get_precision() == "float32"


class TestSetPrecision:
    """Tests for set_precision() validation and application."""

    def setup_method(self):
        _cfg._precision_override = None
        os.environ.pop("MVGLM_POSTERIOR_PRECISION", None)

    def teardown_method(self):
        _cfg._precision_override = None
        os.environ.pop("MVGLM_POSTERIOR_PRECISION", None)

    def test_rejects_invalid_name(self, recorded_updates):
        with pytest.raises(ValueError, match="Unknown precision"):
            set_precision("float16")
        assert recorded_updates == []

    def test_float64_enables_x64(self, recorded_updates):
        set_precision("FLOAT64")
        assert get_precision() == "float64"
        assert recorded_updates == [("jax_enable_x64", True)]

    def test_float32_warns_and_disables_x64(self, recorded_updates):
        with pytest.warns(UserWarning, match="float32"):
            set_precision("float32")
        assert recorded_updates == [("jax_enable_x64", False)]

    def test_apply_returns_active_precision(self, recorded_updates):
        assert apply_precision() == "float64"


class TestPublicApi:
    def test_exports(self):
        import mvglm_posterior

        assert hasattr(mvglm_posterior, "get_precision")
        assert hasattr(mvglm_posterior, "set_precision")
        assert isinstance(mvglm_posterior.__version__, str)

    def test_import_enables_float64(self):
        import jax.numpy as jnp

        import mvglm_posterior  # noqa: F401

        assert jnp.zeros(1).dtype == jnp.float64

    def test_fresh_interpreter_import(self):
        """The package loads from scratch against the installed numpyro."""
        result = subprocess.run(
            [sys.executable, "-c", "import mvglm_posterior"],
            capture_output=True,
            text=True,
            check=False,
        )
        assert result.returncode == 0, result.stderr

    def test_installed_numpyro_meets_declared_minimum(self):
        try:
            requires = metadata.requires("mvglm-posterior") or []
        except metadata.PackageNotFoundError:
            pytest.skip("mvglm-posterior is not installed")
        pins = [r for r in requires if re.match(r"numpyro\s*>=", r)]
        assert pins

        def release(text):
            return tuple(int(part) for part in re.findall(r"\d+", text)[:3])

        minimum = release(pins[0].split(">=", 1)[1])
        assert release(metadata.version("numpyro")) >= minimum
