"""Function metadata, registry and builtin implementations for formula evaluation."""

from __future__ import annotations

import calendar
import datetime
import logging
import math
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# FunctionSpec: argument bounds and classification for one function
# ---------------------------------------------------------------------------


class FuncCategory(str, Enum):
    ARITHMETIC = "arithmetic"
    CONVERSION = "conversion"
    DATE_TIME = "date_time"
    OTHER = "other"
    RANDOM = "random"
    STATISTICAL = "statistical"
    TRIGONOMETRIC = "trigonometric"


@dataclass(frozen=True)
class FunctionSpec:
    """Argument-count bounds and metadata for a formula function.

    ``max_args`` of ``None`` means the function accepts any number of
    arguments beyond ``min_args``.
    """

    min_args: int
    max_args: int | None
    category: FuncCategory = FuncCategory.OTHER
    is_random: bool = False
    is_aggregate: bool = False

    def __post_init__(self) -> None:
        if self.min_args < 0:
            raise ValueError(f"min_args must be non-negative, got {self.min_args}")
        if self.max_args is not None and self.max_args < self.min_args:
            raise ValueError(
                f"max_args ({self.max_args}) is less than min_args ({self.min_args})"
            )

    def accepts(self, n_args: int) -> bool:
        """True if *n_args* lies within both bounds."""
        if n_args < self.min_args:
            return False
        return self.max_args is None or n_args <= self.max_args


# ---------------------------------------------------------------------------
# Coercion helpers (host-language conversion rules)
# ---------------------------------------------------------------------------


def _to_number(val: Any) -> float:
    """Coerce *val* to a float the way formula arithmetic does.

    ``None`` is 0, booleans are 0/1, numeric strings parse (blank is 0),
    anything else is NaN.
    """
    if val is None:
        return 0.0
    if isinstance(val, bool):
        return float(val)
    if isinstance(val, (int, float)):
        return float(val)
    if isinstance(val, str):
        text = val.strip()
        if not text:
            return 0.0
        try:
            return float(text)
        except ValueError:
            return math.nan
    return math.nan


def _truthy(val: Any) -> bool:
    if val is None or val is False:
        return False
    if isinstance(val, (int, float)):
        return val != 0 and not math.isnan(val)
    if isinstance(val, str):
        return val != ""
    return True


def _coerce_string(val: Any) -> str:
    if val is None:
        return "null"
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, float):
        if math.isnan(val):
            return "NaN"
        if math.isinf(val):
            return "Infinity" if val > 0 else "-Infinity"
        if val.is_integer():
            return str(int(val))
    return str(val)


def _is_finite_number(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool) and math.isfinite(val)


def _arg(args: list[Any], index: int) -> Any:
    """Positional argument *index*, or None when it was not supplied."""
    return args[index] if len(args) > index else None


# ---------------------------------------------------------------------------
# Builtin implementations.
# Each takes a list of resolved argument values; extra arguments are ignored.
# ---------------------------------------------------------------------------


def _builtin_boolean(args: list[Any]) -> bool:
    return _truthy(_arg(args, 0))


def _builtin_trunc(args: list[Any]) -> float:
    x = _to_number(_arg(args, 0))
    if not math.isfinite(x):
        return x
    return float(math.ceil(x)) if x < 0 else float(math.floor(x))


def _builtin_frac(args: list[Any]) -> float:
    x = _to_number(_arg(args, 0))
    return x - _builtin_trunc([x])


def _builtin_is_finite(args: list[Any]) -> bool:
    return _is_finite_number(_arg(args, 0))


def _builtin_ln(args: list[Any]) -> float:
    x = _to_number(_arg(args, 0))
    if math.isnan(x) or x < 0:
        return math.nan
    if x == 0:
        return -math.inf
    return math.log(x)


def _builtin_log(args: list[Any]) -> float:
    """Base-10 logarithm. ``ln`` is the natural log."""
    return _builtin_ln(args) / math.log(10)


def _builtin_number(args: list[Any]) -> float:
    return _to_number(_arg(args, 0))


def _builtin_random(args: list[Any], rng: random.Random | None = None) -> float:
    """random() in [0,1), random(max) in [0,max), random(min,max) in [min,max)."""
    draw = (rng or random).random()
    x1 = _arg(args, 0)
    x2 = _arg(args, 1)
    if x1 is None:
        return draw
    if x2 is None:
        return _to_number(x1) * draw
    lo = _to_number(x1)
    return lo + (_to_number(x2) - lo) * draw


_builtin_random._uses_rng = True  # type: ignore[attr-defined]


def _round_half_up(x: float) -> float:
    if not math.isfinite(x):
        return x
    return float(math.floor(x + 0.5))


def _builtin_round(args: list[Any]) -> float:
    x = _to_number(_arg(args, 0))
    n = _arg(args, 1)
    if n is None:
        return _round_half_up(x)
    try:
        npow = 10.0 ** _builtin_trunc([n])
    except OverflowError:
        npow = math.inf
    if npow == 0 or math.isinf(npow):
        # inf/inf and 0/0 both come out as NaN
        return math.nan
    return _round_half_up(npow * x) / npow


def _builtin_string(args: list[Any]) -> str:
    return _coerce_string(_arg(args, 0))


_EARTH_RADIUS_KM = 6371


def _builtin_great_circle_distance(args: list[Any]) -> float:
    """Haversine distance in kilometers between two lat/long points in degrees."""
    lat1, long1, lat2, long2 = (_to_number(_arg(args, i)) for i in range(4))
    delta_lat = math.radians(lat2 - lat1)
    delta_long = math.radians(long2 - long1)
    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2))
        * math.sin(delta_long / 2) ** 2
    )
    if not math.isnan(a):
        # Rounding can push near-antipodal points just outside [0, 1].
        a = min(1.0, max(0.0, a))
    return 2 * _EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _seconds_to_datetime(x: Any) -> datetime.datetime | None:
    try:
        return datetime.datetime.fromtimestamp(_to_number(x))
    except (OverflowError, OSError, ValueError):
        return None


def _builtin_seconds_to_date(args: list[Any]) -> str:
    """Local date string for a number of seconds since 1970-01-01."""
    d = _seconds_to_datetime(_arg(args, 0))
    if d is None:
        return "Invalid Date"
    return d.strftime("%x")


def _builtin_month(args: list[Any]) -> str | None:
    """English month name for epoch seconds, a date, or an ISO date string."""
    x = _arg(args, 0)
    d: datetime.date | None
    if isinstance(x, (datetime.date, datetime.datetime)):
        d = x
    elif _is_finite_number(x):
        d = _seconds_to_datetime(x)
    elif isinstance(x, str):
        try:
            d = datetime.datetime.fromisoformat(x.strip())
        except ValueError:
            d = None
    else:
        d = None
    if d is None:
        return None
    return calendar.month_name[d.month]


# ---------------------------------------------------------------------------
# Host-math implementations: math-module functions adapted to the
# list-of-arguments calling convention.  Domain errors yield NaN.
# ---------------------------------------------------------------------------


def _host(fn: Callable[..., float], n_args: int) -> Callable[[list[Any]], float]:
    def call(args: list[Any]) -> float:
        nums = [_to_number(_arg(args, i)) for i in range(n_args)]
        try:
            return float(fn(*nums))
        except ValueError:
            return math.nan
        except OverflowError:
            return math.inf

    call.__name__ = getattr(fn, "__name__", "host_fn")
    return call


def _host_rounding(fn: Callable[[float], int]) -> Callable[[list[Any]], float]:
    def call(args: list[Any]) -> float:
        x = _to_number(_arg(args, 0))
        if not math.isfinite(x):
            return x
        return float(fn(x))

    call.__name__ = fn.__name__
    return call


def _host_pow(args: list[Any]) -> float:
    base = _to_number(_arg(args, 0))
    exponent = _to_number(_arg(args, 1))
    if base == 0 and exponent < 0:
        return math.inf
    try:
        return math.pow(base, exponent)
    except ValueError:
        return math.nan
    except OverflowError:
        return math.inf


# ---------------------------------------------------------------------------
# Metadata tables
# ---------------------------------------------------------------------------

_A = FuncCategory.ARITHMETIC
_C = FuncCategory.CONVERSION
_T = FuncCategory.TRIGONOMETRIC

BUILTIN_FUNCTION_SPECS: dict[str, FunctionSpec] = {
    "boolean": FunctionSpec(1, 1, _C),
    "frac": FunctionSpec(1, 1, _A),
    "isFinite": FunctionSpec(1, 1, FuncCategory.OTHER),
    "ln": FunctionSpec(1, 1, _A),
    "log": FunctionSpec(1, 1, _A),
    "number": FunctionSpec(1, 1, _C),
    "random": FunctionSpec(0, 2, FuncCategory.RANDOM, is_random=True),
    "round": FunctionSpec(1, 2, _A),
    "string": FunctionSpec(1, 1, _C),
    "trunc": FunctionSpec(1, 1, _A),
    "greatCircleDistance": FunctionSpec(4, 4, FuncCategory.OTHER),
    "secondsToDate": FunctionSpec(1, 1, FuncCategory.DATE_TIME),
    "month": FunctionSpec(1, 1, FuncCategory.DATE_TIME),
}

# log, random and round are served by the builtin library; max/min belong
# to aggregate-aware contexts.
HOST_MATH_SPECS: dict[str, FunctionSpec] = {
    "abs": FunctionSpec(1, 1, _A),
    "acos": FunctionSpec(1, 1, _T),
    "asin": FunctionSpec(1, 1, _T),
    "atan": FunctionSpec(1, 1, _T),
    "atan2": FunctionSpec(2, 2, _T),
    "ceil": FunctionSpec(1, 1, _A),
    "cos": FunctionSpec(1, 1, _T),
    "exp": FunctionSpec(1, 1, _A),
    "floor": FunctionSpec(1, 1, _A),
    "pow": FunctionSpec(2, 2, _A),
    "sin": FunctionSpec(1, 1, _T),
    "sqrt": FunctionSpec(1, 1, _A),
    "tan": FunctionSpec(1, 1, _T),
}

_BUILTINS: dict[str, Callable[..., Any]] = {
    "boolean": _builtin_boolean,
    "frac": _builtin_frac,
    "isFinite": _builtin_is_finite,
    "ln": _builtin_ln,
    "log": _builtin_log,
    "number": _builtin_number,
    "random": _builtin_random,
    "round": _builtin_round,
    "string": _builtin_string,
    "trunc": _builtin_trunc,
    "greatCircleDistance": _builtin_great_circle_distance,
    "secondsToDate": _builtin_seconds_to_date,
    "month": _builtin_month,
}

_HOST_MATH: dict[str, Callable[[list[Any]], Any]] = {
    "abs": _host(abs, 1),
    "acos": _host(math.acos, 1),
    "asin": _host(math.asin, 1),
    "atan": _host(math.atan, 1),
    "atan2": _host(math.atan2, 2),
    "ceil": _host_rounding(math.ceil),
    "cos": _host(math.cos, 1),
    "exp": _host(math.exp, 1),
    "floor": _host_rounding(math.floor),
    "pow": _host_pow,
    "sin": _host(math.sin, 1),
    "sqrt": _host(math.sqrt, 1),
    "tan": _host(math.tan, 1),
}


# ---------------------------------------------------------------------------
# FunctionLibrary: one resolvable function scope
# ---------------------------------------------------------------------------


class FunctionScope(str, Enum):
    BUILTIN = "builtin"
    HOST_MATH = "host_math"
    CLIENT = "client"


@dataclass(frozen=True)
class FunctionLibrary:
    """Callables plus their argument metadata for one function scope.

    A function without an entry in ``specs`` is callable but its argument
    count is not checked.
    """

    scope: FunctionScope
    functions: Mapping[str, Callable[..., Any]] = field(default_factory=dict)
    specs: Mapping[str, FunctionSpec] = field(default_factory=dict)

    def get(self, name: str) -> Callable[..., Any] | None:
        fn = self.functions.get(name)
        return fn if callable(fn) else None

    def spec(self, name: str) -> FunctionSpec | None:
        return self.specs.get(name)


BUILTIN_LIBRARY = FunctionLibrary(FunctionScope.BUILTIN, _BUILTINS, BUILTIN_FUNCTION_SPECS)
HOST_MATH_LIBRARY = FunctionLibrary(FunctionScope.HOST_MATH, _HOST_MATH, HOST_MATH_SPECS)


# ---------------------------------------------------------------------------
# FunctionRegistry: catalogue of function metadata
# ---------------------------------------------------------------------------


class FunctionRegistry:
    """Append-only catalogue of function name -> FunctionSpec.

    Function-providing modules register their metadata once at startup.
    The catalogue feeds documentation and autocompletion; arity checks read
    each library's own metadata.
    """

    def __init__(self) -> None:
        self._specs: dict[str, FunctionSpec] = {}

    @classmethod
    def with_defaults(cls) -> FunctionRegistry:
        """A registry holding the builtin and host-math function specs."""
        registry = cls()
        registry.register_functions(BUILTIN_FUNCTION_SPECS)
        registry.register_functions(HOST_MATH_SPECS)
        return registry

    def register(self, name: str, spec: FunctionSpec) -> None:
        existing = self._specs.get(name)
        if existing is not None:
            if existing == spec:
                return
            raise ValueError(f"Function {name!r} is already registered with a different spec")
        self._specs[name] = spec
        logger.debug("Registered function %s %s", name, spec)

    def register_functions(
        self, specs: Mapping[str, FunctionSpec] | Iterable[tuple[str, FunctionSpec]]
    ) -> None:
        items = specs.items() if isinstance(specs, Mapping) else specs
        for name, spec in items:
            self.register(name, spec)

    def get(self, name: str) -> FunctionSpec | None:
        return self._specs.get(name)

    def has(self, name: str) -> bool:
        return name in self._specs

    def functions_in_category(self, category: FuncCategory) -> list[str]:
        return sorted(n for n, s in self._specs.items() if s.category == category)

    @property
    def supported_functions(self) -> frozenset[str]:
        return frozenset(self._specs.keys())

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __len__(self) -> int:
        return len(self._specs)
