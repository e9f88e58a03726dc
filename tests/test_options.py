"""Tests for ControllerConfig and NonlinearSolverOptions."""

import logging

import pytest

from adaptive_time.analysis.norms import NormType
from adaptive_time.analysis.options import ControllerConfig, NonlinearSolverOptions
from adaptive_time.errors import ConfigurationError


class TestControllerConfigDefaults:
    """Default values."""

    def test_defaults(self):
        config = ControllerConfig()
        assert config.target_tolerance == 1e-2
        assert config.upper_tolerance == 0.0
        assert config.max_deltat == 0.0
        assert config.min_deltat == 0.0
        assert config.max_growth == 0.0
        assert config.global_tolerance is True
        assert config.component_scale == {}
        assert config.norm_type == NormType.DISCRETE_L2
        assert config.nonconvergence_shrink == 0.25
        assert config.max_retries == 50

    def test_defaults_are_valid(self):
        ControllerConfig().validate()
        NonlinearSolverOptions().validate()


class TestSetAndGet:
    """Tests for set()/get()/update_from_mapping()."""

    def test_set_converts_strings(self):
        config = ControllerConfig()
        config.set("upper_tolerance", "5e-2")
        config.set("max_retries", "7")
        config.set("global_tolerance", "false")
        config.set("norm_type", "linf")
        assert config.upper_tolerance == 0.05
        assert config.max_retries == 7
        assert config.global_tolerance is False
        assert config.norm_type == NormType.DISCRETE_L_INF

    def test_set_component_scale(self):
        config = ControllerConfig()
        config.set("component_scale", {"0": "1", "1": 0.5})
        assert config.component_scale == {0: 1.0, 1: 0.5}

    def test_set_unknown_option(self):
        with pytest.raises(ConfigurationError, match="Unknown option"):
            ControllerConfig().set("tolerance", 1e-3)

    def test_set_bad_value(self):
        with pytest.raises(ConfigurationError, match="Invalid value"):
            NonlinearSolverOptions().set("max_nonlinear_iterations", "many")

    def test_get(self):
        config = ControllerConfig(max_growth=2.0)
        assert config.get("max_growth") == 2.0
        assert config.get("not_an_option", 3) == 3

    def test_update_from_mapping(self, caplog):
        config = ControllerConfig()
        with caplog.at_level(logging.WARNING, logger="adaptive_time"):
            config.update_from_mapping(
                {
                    "min_deltat": "1e-9",
                    "max_growth": 2,
                    "unrelated_key": 1,
                    "max_deltat": "huge",
                }
            )
        assert config.min_deltat == 1e-9
        assert config.max_growth == 2.0
        assert config.max_deltat == 0.0
        assert "max_deltat" in caplog.text

    def test_parse_failures_go_to_package_logger(self, monkeypatch):
        warnings = []

        class RecordingLogger:
            def warning(self, msg):
                warnings.append(msg)

        monkeypatch.setattr("adaptive_time.analysis.options.logger", RecordingLogger())
        NonlinearSolverOptions().update_from_mapping({"damping": "soft"})
        assert len(warnings) == 1
        assert "damping" in warnings[0]

    def test_update_with_custom_number_parser(self):
        def parse_si(text):
            return float(text.replace("m", "e-3"))

        config = ControllerConfig()
        config.update_from_mapping({"max_deltat": "5m"}, parse_number=parse_si)
        assert config.max_deltat == pytest.approx(5e-3)

    def test_to_dict(self):
        d = ControllerConfig(component_scale={0: 1.0}).to_dict()
        assert d["norm_type"] == "l2"
        assert d["component_scale"] == {0: 1.0}
        assert d["target_tolerance"] == 1e-2

    def test_copy_is_independent(self):
        config = ControllerConfig(component_scale={0: 1.0})
        clone = config.copy()
        clone.component_scale[1] = 2.0
        clone.target_tolerance = 1e-4
        assert config.component_scale == {0: 1.0}
        assert config.target_tolerance == 1e-2


class TestControllerConfigValidation:
    """Tests for ControllerConfig.validate()."""

    @pytest.mark.parametrize(
        "overrides,match",
        [
            ({"target_tolerance": 0.0}, "target_tolerance"),
            ({"target_tolerance": -1e-3}, "target_tolerance"),
            ({"upper_tolerance": -1.0}, "upper_tolerance"),
            ({"upper_tolerance": 1e-3}, "upper_tolerance"),
            ({"max_deltat": -1.0}, "max_deltat"),
            ({"min_deltat": 1.0, "max_deltat": 0.5}, "min_deltat"),
            ({"max_growth": 0.5}, "max_growth"),
            ({"nonconvergence_shrink": 1.0}, "nonconvergence_shrink"),
            ({"max_retries": 0}, "max_retries"),
            ({"component_scale": {0: -1.0}}, "component_scale"),
        ],
    )
    def test_invalid(self, overrides, match):
        with pytest.raises(ConfigurationError, match=match):
            ControllerConfig(**overrides).validate()

    def test_norm_type_string_assigned_directly(self):
        config = ControllerConfig()
        config.norm_type = "l1"
        with pytest.raises(ConfigurationError, match="norm_type"):
            config.validate()

        config.set("norm_type", "l1")
        config.validate()
        assert config.norm_type == NormType.DISCRETE_L1

    def test_upper_equal_to_target_is_valid(self):
        ControllerConfig(target_tolerance=1e-3, upper_tolerance=1e-3).validate()

    def test_component_scale_against_variables(self):
        config = ControllerConfig(component_scale={0: 1.0, 1: 1.0})
        config.validate(variables=[0, 1])
        with pytest.raises(ConfigurationError):
            config.validate(variables=[0, 1, 2])

    def test_empty_component_scale_matches_any_variables(self):
        ControllerConfig().validate(variables=range(10))

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            ControllerConfig(max_retries=0).validate()


class TestNonlinearSolverOptionsValidation:
    """Tests for NonlinearSolverOptions.validate()."""

    @pytest.mark.parametrize(
        "overrides,match",
        [
            ({"max_nonlinear_iterations": 0}, "max_nonlinear_iterations"),
            ({"max_linear_iterations": 0}, "max_linear_iterations"),
            ({"absolute_residual_tolerance": -1.0}, "absolute_residual_tolerance"),
            ({"relative_step_tolerance": -1.0}, "relative_step_tolerance"),
            ({"initial_linear_tolerance": 0.0}, "initial_linear_tolerance"),
            ({"linear_tolerance_multiplier": 0.0}, "linear_tolerance_multiplier"),
            ({"damping": 1.5}, "damping"),
        ],
    )
    def test_invalid(self, overrides, match):
        with pytest.raises(ConfigurationError, match=match):
            NonlinearSolverOptions(**overrides).validate()

    def test_copy(self):
        opts = NonlinearSolverOptions(max_nonlinear_iterations=5)
        clone = opts.copy()
        clone.max_nonlinear_iterations = 9
        assert opts.max_nonlinear_iterations == 5
