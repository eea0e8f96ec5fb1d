# backend/mealmacro/services/constraint_resolver.py

import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from mealmacro.schemas.optimizer import IngredientData
from mealmacro.services.macro_math import round_half_up


@dataclass(frozen=True)
class ResolvedConstraint:
    """Feasible weight range of one ingredient.

    The residual range is relative to the mandatory baseline, so the absolute
    weight always lies in [mandatory_base + residual_lo, mandatory_base + residual_hi].
    residual_hi is math.inf when the ingredient has no max.
    """
    mandatory_base: float
    residual_lo: float
    residual_hi: float
    step: float

    @property
    def absolute_lo(self) -> float:
        return self.mandatory_base + self.residual_lo

    @property
    def absolute_hi(self) -> float:
        return self.mandatory_base + self.residual_hi

    @property
    def move(self) -> float:
        """Grams per search move: the step itself, or its smallest multiple reaching 1 g"""
        if self.step >= 1:
            return self.step
        return self.step * math.ceil(1 / self.step - 1e-9)

    def project(self, weight: float) -> float:
        """Snap an absolute weight onto this ingredient's step grid and range"""
        residual = project_to_feasible(
            weight - self.mandatory_base, self.step, self.residual_lo, self.residual_hi
        )
        return residual + self.mandatory_base


@dataclass
class ConstraintSet:
    """Per-ingredient constraints in ingredient order"""
    constraints: List[ResolvedConstraint]
    infeasible_index: Optional[int] = None

    @property
    def feasible(self) -> bool:
        return self.infeasible_index is None

    @property
    def mandatory(self) -> np.ndarray:
        return np.array([c.mandatory_base for c in self.constraints], dtype=float)

    @property
    def hi(self) -> np.ndarray:
        return np.array([c.residual_hi for c in self.constraints], dtype=float)

    def project_all(self, weights: np.ndarray) -> np.ndarray:
        return np.array(
            [c.project(float(w)) for c, w in zip(self.constraints, weights)], dtype=float
        )

    def __getitem__(self, i: int) -> ResolvedConstraint:
        return self.constraints[i]


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def round_to_step(value: float, step: float) -> float:
    if step <= 0:
        return value
    return round_half_up(value / step) * step


def project_to_feasible(value: float, step: float, lo: float, hi: float) -> float:
    """Nearest point of {lo + k*step} inside [lo, hi]"""
    y = round_to_step(value, step) if step > 0 else value
    y = clamp(y, lo, hi)
    if step > 0 and math.isfinite(y):
        k = round_half_up((y - lo) / step)
        y = clamp(lo + k * step, lo, hi)
    return y


def resolve_constraint(ing: IngredientData) -> ResolvedConstraint:
    step = ing.indivisible if ing.indivisible and ing.indivisible > 0 else 1.0
    min_base = max(ing.min if ing.min is not None else 0.0, 0.0)
    max_base = max(ing.max if ing.max is not None else math.inf, 0.0)
    mandatory = max(ing.mandatory if ing.mandatory is not None else 0.0, 0.0)

    lo = round_to_step(max(min_base - mandatory, 0.0), step)
    hi = max(max_base - mandatory, 0.0)
    if math.isfinite(hi):
        hi = math.floor(hi / step) * step
    hi = max(hi, lo)

    return ResolvedConstraint(mandatory_base=mandatory, residual_lo=lo, residual_hi=hi, step=step)


def resolve_constraints(ingredients: List[IngredientData]) -> ConstraintSet:
    """Resolve every ingredient and flag the first one whose mandatory grams exceed its max"""
    constraints = [resolve_constraint(ing) for ing in ingredients]

    infeasible_index = None
    for i, (ing, c) in enumerate(zip(ingredients, constraints)):
        if ing.max is not None and ing.max < c.mandatory_base:
            infeasible_index = i
            break

    return ConstraintSet(constraints=constraints, infeasible_index=infeasible_index)
