"""formulactx - name binding, compilation and evaluation context for formulas.

Usage::

    from formulactx import FormulaContext, BinaryOp, FunctionCall, Identifier, Literal

    ctx = FormulaContext(vars={"rate": 0.5}, e_vars={"x"})
    compiled = ctx.compile(BinaryOp("*", Identifier("rate"), Identifier("x")))
    compiled.evaluate({"x": 10})   # 5.0
    compiled.evaluate({"x": 20})   # 10.0

    ctx.evaluate(FunctionCall("round", [Literal(3.14159), Literal(2)]))   # 3.14
"""

from formulactx._context import CONSTANTS, FormulaContext, FunctionContext
from formulactx._errors import (
    FormulaError,
    FuncArgsError,
    FuncReferenceError,
    VarReferenceError,
    first_error,
    is_error,
)
from formulactx._functions import (
    BUILTIN_FUNCTION_SPECS,
    BUILTIN_LIBRARY,
    HOST_MATH_LIBRARY,
    HOST_MATH_SPECS,
    FuncCategory,
    FunctionLibrary,
    FunctionRegistry,
    FunctionScope,
    FunctionSpec,
)
from formulactx._ir import (
    Call,
    CompiledFormula,
    Constant,
    DeferredError,
    Operation,
    ScopedRead,
    VarScope,
)
from formulactx._nodes import BinaryOp, FunctionCall, Identifier, Literal, UnaryOp
from formulactx._protocol import (
    RANDOM_SPEC,
    Dependency,
    DependencyManager,
    DependencySpec,
    DependencyType,
    Invalidatable,
)
from formulactx._recorder import DependencyRecorder

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "BUILTIN_FUNCTION_SPECS",
    "BUILTIN_LIBRARY",
    "BinaryOp",
    "CONSTANTS",
    "Call",
    "CompiledFormula",
    "Constant",
    "DeferredError",
    "Dependency",
    "DependencyManager",
    "DependencyRecorder",
    "DependencySpec",
    "DependencyType",
    "FormulaContext",
    "FormulaError",
    "FuncArgsError",
    "FuncCategory",
    "FuncReferenceError",
    "FunctionCall",
    "FunctionContext",
    "FunctionLibrary",
    "FunctionRegistry",
    "FunctionScope",
    "FunctionSpec",
    "HOST_MATH_LIBRARY",
    "HOST_MATH_SPECS",
    "Identifier",
    "Invalidatable",
    "Literal",
    "Operation",
    "RANDOM_SPEC",
    "ScopedRead",
    "UnaryOp",
    "VarReferenceError",
    "VarScope",
    "first_error",
    "is_error",
]
