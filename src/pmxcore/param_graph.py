"""Parameter dependency graph for derived micro-rate constants."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import sympy as sp

from .errors import ParameterDomainError

# Derived name -> expression over base parameters.
DERIVED_RATE_CONSTANTS: Tuple[Tuple[str, str], ...] = (
    ("k10", "CL/V1"),
    ("k12", "Q/V1"),
    ("k21", "Q/V2"),
    ("ktr", "4/mtt"),
)


@dataclass(frozen=True)
class CompiledExpression:
    tokens: Tuple[str, ...]
    func: Callable[..., float]
    sympy_expr: sp.Expr

    def evaluate(self, context: Mapping[str, float]) -> float:
        values = [context[token] for token in self.tokens]
        return float(self.func(*values))


_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@lru_cache(maxsize=None)
def compile_expression(expression: str) -> CompiledExpression:
    text = expression.replace("^", "**")
    # Bind every identifier to a plain symbol so names such as Q or gamma are not
    # captured by sympy builtins.
    local_symbols = {name: sp.Symbol(name) for name in _IDENTIFIER.findall(text)}
    sym_expr = sp.sympify(text, locals=local_symbols)
    symbols = sorted(sym_expr.free_symbols, key=lambda sym: sym.name)
    tokens = tuple(sym.name for sym in symbols)
    func = sp.lambdify(symbols, sym_expr, modules=["math"])
    return CompiledExpression(tokens=tokens, func=func, sympy_expr=sym_expr)


@dataclass
class ParameterSpec:
    name: str
    expression: str
    dependencies: Sequence[str] = field(default_factory=list)


class ParameterGraph:
    """Manages base and derived parameters with dependency resolution."""

    def __init__(self) -> None:
        self._values: Dict[str, float] = {}
        self._metadata: Dict[str, Dict[str, object]] = {}
        self._specs: Dict[str, ParameterSpec] = {}

    def add_base(self, name: str, value: float) -> None:
        self._values[name] = float(value)
        self._metadata[name] = {"type": "base", "raw_value": value}

    def add_spec(self, name: str, expression: str, dependencies: Optional[Sequence[str]] = None) -> None:
        compiled = compile_expression(expression)
        deps = list(dependencies) if dependencies is not None else list(compiled.tokens)
        self._specs[name] = ParameterSpec(name=name, expression=expression, dependencies=deps)

    def evaluate(self) -> Mapping[str, float]:
        remaining = dict(self._specs)
        while remaining:
            progress = False
            for name, spec in list(remaining.items()):
                if any(dep not in self._values for dep in spec.dependencies):
                    continue
                compiled = compile_expression(spec.expression)
                try:
                    value = compiled.evaluate(self._values)
                except (ArithmeticError, KeyError) as exc:
                    raise ParameterDomainError(
                        f"Failed to evaluate '{name} = {spec.expression}': {exc}"
                    ) from exc
                self._values[name] = value
                self._metadata[name] = {
                    "type": "derived",
                    "expression": spec.expression,
                    "dependencies": list(spec.dependencies),
                    "canonical_value": value,
                }
                remaining.pop(name)
                progress = True
            if not progress:
                unresolved = ", ".join(sorted(remaining.keys()))
                raise ParameterDomainError(f"Unable to resolve derived parameters: {unresolved}")
        return dict(self._values)

    @property
    def metadata(self) -> Mapping[str, Dict[str, object]]:
        return self._metadata


def resolve_parameters(parameters: Mapping[str, float]) -> Dict[str, float]:
    """Return ``parameters`` plus every derived rate constant whose inputs are present."""
    graph = ParameterGraph()
    for name, value in parameters.items():
        graph.add_base(name, value)
    available = set(parameters)
    for name, expression in DERIVED_RATE_CONSTANTS:
        if name in available:
            continue
        compiled = compile_expression(expression)
        if all(token in available for token in compiled.tokens):
            graph.add_spec(name, expression)
    return dict(graph.evaluate())


__all__: List[str] = [
    "DERIVED_RATE_CONSTANTS",
    "CompiledExpression",
    "ParameterGraph",
    "ParameterSpec",
    "compile_expression",
    "resolve_parameters",
]
