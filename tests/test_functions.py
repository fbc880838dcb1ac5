"""Tests for formulactx function metadata, registry and builtins."""

from __future__ import annotations

import datetime
import math
import random

import pytest
from formulactx._functions import (
    _BUILTINS,
    _HOST_MATH,
    BUILTIN_FUNCTION_SPECS,
    BUILTIN_LIBRARY,
    HOST_MATH_SPECS,
    FuncCategory,
    FunctionLibrary,
    FunctionRegistry,
    FunctionScope,
    FunctionSpec,
)


class TestFunctionSpec:
    def test_bounded(self) -> None:
        spec = FunctionSpec(1, 2, FuncCategory.ARITHMETIC)
        assert spec.accepts(1)
        assert spec.accepts(2)
        assert not spec.accepts(0)
        assert not spec.accepts(3)

    def test_unbounded(self) -> None:
        spec = FunctionSpec(1, None, FuncCategory.STATISTICAL)
        assert spec.accepts(100)

    def test_max_below_min_rejected(self) -> None:
        with pytest.raises(ValueError, match="less than min_args"):
            FunctionSpec(3, 2)

    def test_negative_min_rejected(self) -> None:
        with pytest.raises(ValueError, match="non-negative"):
            FunctionSpec(-1, 2)

    def test_all_tables_have_a_spec_per_function(self) -> None:
        assert set(_BUILTINS) == set(BUILTIN_FUNCTION_SPECS)
        assert set(_HOST_MATH) == set(HOST_MATH_SPECS)

    def test_only_random_is_random(self) -> None:
        flagged = {n for n, s in BUILTIN_FUNCTION_SPECS.items() if s.is_random}
        assert flagged == {"random"}
        assert not any(s.is_random for s in HOST_MATH_SPECS.values())


class TestFunctionRegistry:
    def test_defaults_registered(self) -> None:
        reg = FunctionRegistry.with_defaults()
        assert reg.has("round")
        assert "sin" in reg
        assert reg.get("greatCircleDistance") == FunctionSpec(4, 4, FuncCategory.OTHER)
        assert len(reg) == len(BUILTIN_FUNCTION_SPECS) + len(HOST_MATH_SPECS)

    def test_starts_empty(self) -> None:
        reg = FunctionRegistry()
        assert len(reg) == 0
        assert reg.get("round") is None

    def test_identical_reregistration_is_noop(self) -> None:
        reg = FunctionRegistry.with_defaults()
        reg.register("round", BUILTIN_FUNCTION_SPECS["round"])
        assert reg.get("round") == BUILTIN_FUNCTION_SPECS["round"]

    def test_conflicting_registration_rejected(self) -> None:
        reg = FunctionRegistry.with_defaults()
        with pytest.raises(ValueError, match="already registered"):
            reg.register("round", FunctionSpec(1, 1))

    def test_register_pairs(self) -> None:
        reg = FunctionRegistry()
        reg.register_functions([("mean", FunctionSpec(1, None, FuncCategory.STATISTICAL))])
        assert reg.has("mean")

    def test_functions_in_category(self) -> None:
        reg = FunctionRegistry.with_defaults()
        trig = reg.functions_in_category(FuncCategory.TRIGONOMETRIC)
        assert trig == ["acos", "asin", "atan", "atan2", "cos", "sin", "tan"]
        assert reg.functions_in_category(FuncCategory.RANDOM) == ["random"]

    def test_supported_functions_property(self) -> None:
        funcs = FunctionRegistry.with_defaults().supported_functions
        assert isinstance(funcs, frozenset)
        assert "month" in funcs

    def test_case_sensitive(self) -> None:
        reg = FunctionRegistry.with_defaults()
        assert not reg.has("ROUND")


class TestFunctionLibrary:
    def test_lookup(self) -> None:
        assert BUILTIN_LIBRARY.scope is FunctionScope.BUILTIN
        assert BUILTIN_LIBRARY.get("trunc") is _BUILTINS["trunc"]
        assert BUILTIN_LIBRARY.spec("trunc") == BUILTIN_FUNCTION_SPECS["trunc"]

    def test_non_callable_entries_ignored(self) -> None:
        lib = FunctionLibrary(FunctionScope.CLIENT, {"answer": 42})
        assert lib.get("answer") is None

    def test_missing_spec(self) -> None:
        lib = FunctionLibrary(FunctionScope.CLIENT, {"f": lambda args: 1})
        assert lib.spec("f") is None


class TestBuiltinConversion:
    def test_boolean(self) -> None:
        fn = _BUILTINS["boolean"]
        assert fn([1]) is True
        assert fn([0]) is False
        assert fn([""]) is False
        assert fn(["0"]) is True
        assert fn([math.nan]) is False
        assert fn([None]) is False

    def test_number(self) -> None:
        fn = _BUILTINS["number"]
        assert fn([" 4.5 "]) == 4.5
        assert fn([""]) == 0.0
        assert fn([True]) == 1.0
        assert fn([None]) == 0.0
        assert math.isnan(fn(["abc"]))

    def test_string(self) -> None:
        fn = _BUILTINS["string"]
        assert fn([3.0]) == "3"
        assert fn([2.5]) == "2.5"
        assert fn([True]) == "true"
        assert fn([None]) == "null"
        assert fn([math.inf]) == "Infinity"

    def test_is_finite(self) -> None:
        fn = _BUILTINS["isFinite"]
        assert fn([1.5]) is True
        assert fn([math.inf]) is False
        assert fn([math.nan]) is False
        assert fn(["1"]) is False
        assert fn([True]) is False


class TestBuiltinArithmetic:
    def test_trunc_negative_uses_ceil(self) -> None:
        assert _BUILTINS["trunc"]([-2.7]) == -2.0

    def test_trunc_positive_uses_floor(self) -> None:
        assert _BUILTINS["trunc"]([2.7]) == 2.0

    def test_frac(self) -> None:
        assert _BUILTINS["frac"]([-2.7]) == pytest.approx(-0.7)
        assert _BUILTINS["frac"]([3.25]) == pytest.approx(0.25)

    def test_log_is_base_10(self) -> None:
        assert _BUILTINS["log"]([100]) == pytest.approx(2.0)

    def test_ln_is_natural(self) -> None:
        assert _BUILTINS["ln"]([math.e]) == pytest.approx(1.0)

    def test_ln_edges(self) -> None:
        assert _BUILTINS["ln"]([0]) == -math.inf
        assert math.isnan(_BUILTINS["ln"]([-1]))
        assert _BUILTINS["log"]([0]) == -math.inf

    def test_round_default_digits(self) -> None:
        assert _BUILTINS["round"]([3.14159]) == 3.0

    def test_round_2_digits(self) -> None:
        assert _BUILTINS["round"]([3.14159, 2]) == pytest.approx(3.14)

    def test_round_half_up(self) -> None:
        assert _BUILTINS["round"]([2.5]) == 3.0
        assert _BUILTINS["round"]([-2.5]) == -2.0

    def test_round_digits_truncated(self) -> None:
        assert _BUILTINS["round"]([3.14159, 2.9]) == pytest.approx(3.14)

    def test_round_negative_digits(self) -> None:
        assert _BUILTINS["round"]([1234, -2]) == pytest.approx(1200.0)

    @pytest.mark.parametrize("digits", [400, -400, 1e308])
    def test_round_extreme_digits_is_nan(self, digits: float) -> None:
        assert math.isnan(_BUILTINS["round"]([5, digits]))


class TestBuiltinRandom:
    def test_no_args(self) -> None:
        rng = random.Random(7)
        for _ in range(50):
            assert 0 <= _BUILTINS["random"]([], rng=rng) < 1

    def test_max_only(self) -> None:
        rng = random.Random(7)
        for _ in range(50):
            assert 0 <= _BUILTINS["random"]([3], rng=rng) < 3

    def test_min_max(self) -> None:
        rng = random.Random(7)
        for _ in range(50):
            assert 5 <= _BUILTINS["random"]([5, 10], rng=rng) < 10

    def test_seeded_is_reproducible(self) -> None:
        a = _BUILTINS["random"]([], rng=random.Random(1))
        b = _BUILTINS["random"]([], rng=random.Random(1))
        assert a == b

    def test_module_rng_fallback(self) -> None:
        assert 0 <= _BUILTINS["random"]([]) < 1


class TestBuiltinGeo:
    def test_quarter_circumference(self) -> None:
        fn = _BUILTINS["greatCircleDistance"]
        assert fn([0, 0, 0, 90]) == pytest.approx(10007.5, abs=0.1)

    def test_same_point(self) -> None:
        assert _BUILTINS["greatCircleDistance"]([45, 45, 45, 45]) == 0.0

    def test_pole_to_pole(self) -> None:
        fn = _BUILTINS["greatCircleDistance"]
        assert fn([90, 0, -90, 0]) == pytest.approx(math.pi * 6371)

    def test_near_antipodal(self) -> None:
        fn = _BUILTINS["greatCircleDistance"]
        assert fn([-84.9, -180, 84.9, 0]) == pytest.approx(math.pi * 6371, rel=1e-6)

    @pytest.mark.parametrize("lat", [-89.9, -45.1, -0.1, 0.0, 0.1, 30.7, 84.9, 89.9])
    def test_antipodes_stay_finite(self, lat: float) -> None:
        fn = _BUILTINS["greatCircleDistance"]
        for lon in (-180.0, -179.9, 0.0, 179.9, 180.0):
            antipode_lon = lon - 180.0 if lon > 0 else lon + 180.0
            assert math.isfinite(fn([lat, lon, -lat, antipode_lon]))


class TestBuiltinDates:
    SECONDS = 1_600_000_000  # mid-September 2020 in every timezone

    def test_seconds_to_date(self) -> None:
        expected = datetime.datetime.fromtimestamp(self.SECONDS).strftime("%x")
        assert _BUILTINS["secondsToDate"]([self.SECONDS]) == expected

    def test_seconds_to_date_out_of_range(self) -> None:
        assert _BUILTINS["secondsToDate"]([1e20]) == "Invalid Date"

    def test_month_from_seconds(self) -> None:
        assert _BUILTINS["month"]([self.SECONDS]) == "September"

    def test_month_from_iso_string(self) -> None:
        assert _BUILTINS["month"](["2021-03-15"]) == "March"

    def test_month_from_date(self) -> None:
        assert _BUILTINS["month"]([datetime.date(2020, 7, 4)]) == "July"

    def test_month_unparsable(self) -> None:
        assert _BUILTINS["month"](["not a date"]) is None
        assert _BUILTINS["month"]([None]) is None


class TestHostMath:
    def test_basic(self) -> None:
        assert _HOST_MATH["sqrt"]([16]) == 4.0
        assert _HOST_MATH["abs"]([-3]) == 3.0
        assert _HOST_MATH["pow"]([2, 10]) == 1024.0
        assert _HOST_MATH["atan2"]([1, 1]) == pytest.approx(math.pi / 4)

    def test_domain_errors_are_nan(self) -> None:
        assert math.isnan(_HOST_MATH["sqrt"]([-1]))
        assert math.isnan(_HOST_MATH["asin"]([2]))
        assert math.isnan(_HOST_MATH["pow"]([-8, 0.5]))

    def test_overflow_is_infinite(self) -> None:
        assert _HOST_MATH["exp"]([1000]) == math.inf
        assert _HOST_MATH["pow"]([0, -1]) == math.inf

    def test_rounding(self) -> None:
        assert _HOST_MATH["ceil"]([-1.5]) == -1.0
        assert _HOST_MATH["floor"]([-1.5]) == -2.0
        assert _HOST_MATH["ceil"]([math.inf]) == math.inf

    def test_extra_args_ignored(self) -> None:
        assert _HOST_MATH["sqrt"]([9, 100]) == 3.0
