# backend/mealmacro/services/meal_macro_optimizer.py

import math
import random
import logging
from enum import Enum
from functools import cmp_to_key
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Union

import numpy as np

from mealmacro.core.config import Settings, settings
from mealmacro.schemas.optimizer import (
    IngredientData, IngredientPortion, MacroDeviation, MacroTarget, MacroTotals,
    OptimizationOutput
)
from mealmacro.services.constraint_resolver import ConstraintSet, clamp, resolve_constraints
from mealmacro.services.macro_math import (
    CARBO, FAT, KCAL_PER_GRAM, PROTEIN, MacroWeights, density_matrix, kcal, objective,
    pct_dev, round1, round_half_up, totals
)

logger = logging.getLogger(__name__)

TOLERANCE = 25.0  # percent
MAX_ITERATIONS = 4000
JITTER_PROBABILITY = 0.3
IMPROVEMENT_EPSILON = 1e-9
TIE_EPSILON = 1e-6


@dataclass(frozen=True)
class TryConfig:
    """One attempt of the multi-try search"""
    shuffle: bool
    weights: MacroWeights
    l1: float


DEFAULT_TRIES = (
    TryConfig(shuffle=False, weights=MacroWeights(wp=1.0, wf=0.25, wc=0.10), l1=1e-3),
    TryConfig(shuffle=True, weights=MacroWeights(wp=1.0, wf=0.35, wc=0.12), l1=2e-3),
    TryConfig(shuffle=True, weights=MacroWeights(wp=1.0, wf=0.30, wc=0.20), l1=2e-3),
    TryConfig(shuffle=True, weights=MacroWeights(wp=1.0, wf=0.30, wc=0.15), l1=5e-3),
)


@dataclass
class OptimizerConfig:
    """Tunables of the optimizer"""
    tolerance: float = TOLERANCE
    tries: List[TryConfig] = field(default_factory=lambda: list(DEFAULT_TRIES))
    max_iterations: int = MAX_ITERATIONS
    jitter_probability: float = JITTER_PROBABILITY

    def __post_init__(self):
        if not self.tries:
            raise ValueError("At least one try configuration is required")
        if self.tolerance < 0:
            raise ValueError(f"Tolerance must be >= 0, got {self.tolerance}")
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be > 0, got {self.max_iterations}")
        if not 0 <= self.jitter_probability <= 1:
            raise ValueError(f"jitter_probability must be within [0, 1], got {self.jitter_probability}")

    @classmethod
    def from_settings(cls, s: Settings = settings) -> "OptimizerConfig":
        return cls(
            tolerance=s.optimizer_tolerance,
            max_iterations=s.optimizer_max_iterations,
            jitter_probability=s.optimizer_jitter_probability,
        )


class OptimizationStatus(str, Enum):
    OK = "ok"
    INFEASIBLE = "infeasible"
    TOLERANCE_EXCEEDED = "tolerance_exceeded"


@dataclass
class OptimizationResult:
    """Outcome of a solve; output is the accepted, degenerate or best-attempt result"""
    status: OptimizationStatus
    output: OptimizationOutput
    tolerance: float
    attempts: int = 0
    score: Optional[float] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == OptimizationStatus.OK


class ToleranceExceededError(ValueError):
    """No attempt brought every macro within tolerance"""

    def __init__(self, deviation: MacroDeviation, tolerance: float):
        self.deviation = deviation
        self.tolerance = tolerance
        super().__init__(
            f"Unable to meet macros within TOLERANCE={tolerance:g}% with given ingredients. "
            f"Best deviations: protein={deviation.protein:g}%, fat={deviation.fat:g}%, "
            f"carbs={deviation.carbo:g}%."
        )


@dataclass
class _MealProblem:
    """Everything an attempt needs, built once per call"""
    target: MacroTarget
    ingredients: List[IngredientData]
    A: np.ndarray
    constraints: ConstraintSet

    @property
    def n(self) -> int:
        return len(self.ingredients)


TargetLike = Union[MacroTarget, Dict]
IngredientLike = Union[IngredientData, Dict]


class MacroMealOptimizer:
    """Greedy construction plus hill-climbing refinement toward a macro target.

    Strategy:
    1) Pre-allocate all mandatory grams.
    2) Greedy bounded knapsack by priority (protein -> fat -> carbs).
    3) Coordinate-descent refinement on a discrete step grid.
    4) Further attempts with shuffled order, jitter and other weights
       while the deviation stays above tolerance.
    """

    def __init__(self, config: OptimizerConfig = None, rng: random.Random = None):
        self.config = config or OptimizerConfig.from_settings()
        self.rng = rng or random.Random(settings.optimizer_random_seed)

    def optimize(
        self,
        target: TargetLike,
        ingredients: Sequence[IngredientLike]
    ) -> OptimizationOutput:
        """Return an output within tolerance.

        The infeasible case (mandatory grams above max) returns the all-zero
        output with 100% deviations instead of raising.
        Raises ToleranceExceededError when every attempt misses the tolerance.
        """
        result = self.solve(target, ingredients)

        if result.status == OptimizationStatus.TOLERANCE_EXCEEDED:
            raise ToleranceExceededError(result.output.deviation, result.tolerance)

        return result.output

    def solve(
        self,
        target: TargetLike,
        ingredients: Sequence[IngredientLike]
    ) -> OptimizationResult:
        problem = self._build_problem(target, ingredients)
        tolerance = self.config.tolerance

        if not problem.constraints.feasible:
            ing = problem.ingredients[problem.constraints.infeasible_index]
            reason = f"Mandatory grams exceed available max for {ing.name}"
            logger.warning(reason)
            return OptimizationResult(
                status=OptimizationStatus.INFEASIBLE,
                output=self._empty_infeasible(problem),
                tolerance=tolerance,
                reason=reason,
            )

        best_output = None
        best_score = math.inf

        for attempt, cfg in enumerate(self.config.tries, start=1):
            seed_order = list(range(problem.n))
            if cfg.shuffle:
                self.rng.shuffle(seed_order)

            x = self._build_greedy(problem, seed_order)

            if cfg.shuffle:
                x = self._jitter(problem, x)

            x = self._refine_local(problem, x, cfg.weights, cfg.l1)

            score = objective(totals(x, problem.A), problem.target, cfg.weights, cfg.l1, x)
            out = self._build_output(problem, x)

            if best_output is None or score < best_score:
                best_score = score
                best_output = out

            if out.deviation.within(tolerance):
                logger.info(f"Attempt {attempt} accepted (score={score:.4f}, deviation={out.deviation})")
                return OptimizationResult(
                    status=OptimizationStatus.OK,
                    output=out,
                    tolerance=tolerance,
                    attempts=attempt,
                    score=score,
                )

            logger.debug(f"Attempt {attempt} outside tolerance (score={score:.4f}, deviation={out.deviation})")

        d = best_output.deviation
        reason = (
            f"Best deviations: protein={d.protein:g}%, fat={d.fat:g}%, carbs={d.carbo:g}% "
            f"exceed tolerance {tolerance:g}%"
        )
        logger.warning(f"Optimization for '{problem.target.name}' failed after {len(self.config.tries)} attempts. {reason}")
        return OptimizationResult(
            status=OptimizationStatus.TOLERANCE_EXCEEDED,
            output=best_output,
            tolerance=tolerance,
            attempts=len(self.config.tries),
            score=best_score,
            reason=reason,
        )

    def _build_problem(
        self,
        target: TargetLike,
        ingredients: Sequence[IngredientLike]
    ) -> _MealProblem:
        if not isinstance(target, MacroTarget):
            target = MacroTarget(**target)
        ings = [i if isinstance(i, IngredientData) else IngredientData(**i) for i in ingredients]

        if not ings:
            raise ValueError("Please include at least one ingredient to run the optimizer.")

        return _MealProblem(
            target=target,
            ingredients=ings,
            A=density_matrix(ings),
            constraints=resolve_constraints(ings),
        )

    # ----- Greedy construction -----

    def _build_greedy(self, problem: _MealProblem, seed_order: List[int]) -> np.ndarray:
        """Mandatory baseline plus density-ranked packing of the macro shortfall"""
        A = problem.A
        cons = problem.constraints
        x0 = cons.mandatory
        hi = cons.hi
        y = np.zeros(problem.n)

        t0 = totals(x0, A)
        need = {
            PROTEIN: max(problem.target.protein - t0.p, 0.0),
            FAT: max(problem.target.fat - t0.f, 0.0),
            CARBO: max(problem.target.carbo - t0.c, 0.0),
        }

        kcal_per_gram = A @ KCAL_PER_GRAM
        position = {i: pos for pos, i in enumerate(seed_order)}

        for macro in (PROTEIN, FAT, CARBO):
            remain = need[macro]
            if remain <= 0:
                continue

            def efficiency(i):
                gain = A[i, macro]
                if gain <= 0:
                    return -math.inf
                return gain / max(kcal_per_gram[i], 1e-9)

            ranked = sorted(
                (i for i in seed_order if hi[i] > 0),
                key=lambda i: (-efficiency(i), position[i])
            )

            for i in ranked:
                if remain <= 0:
                    break
                step = cons[i].move
                gain_per_step = A[i, macro] * step
                if gain_per_step <= 0:
                    continue

                capacity = hi[i] - y[i]
                if capacity <= 0:
                    continue

                k = math.floor(remain / gain_per_step)
                if math.isfinite(capacity):
                    k = min(k, math.floor(capacity / step))
                if k <= 0:
                    continue

                y[i] += k * step
                remain -= gain_per_step * k

        x = np.empty(problem.n)
        for i, ing in enumerate(problem.ingredients):
            upper = ing.max if ing.max is not None else math.inf
            x[i] = cons[i].project(clamp(x0[i] + y[i], 0.0, upper))
        return x

    def _jitter(self, problem: _MealProblem, x: np.ndarray) -> np.ndarray:
        """Nudge some weights one step up or down to escape local optima"""
        x = x.copy()
        p = self.config.jitter_probability
        for i, c in enumerate(problem.constraints.constraints):
            if c.residual_hi <= 0:
                continue
            nudge = self.rng.random() < p
            direction = -1 if self.rng.random() < 0.5 else 1
            candidate = clamp(x[i] + (direction * c.move if nudge else 0.0), c.absolute_lo, c.absolute_hi)
            x[i] = c.project(candidate)
        return x

    # ----- Local refinement -----

    def _priority_order(self, A: np.ndarray) -> List[int]:
        """Protein-dense first, then fat-dense, then carb-dense"""
        def compare(i, j):
            for macro in (PROTEIN, FAT, CARBO):
                diff = A[i, macro] - A[j, macro]
                if abs(diff) > TIE_EPSILON:
                    return -1 if diff > 0 else 1
            return 0

        return sorted(range(A.shape[0]), key=cmp_to_key(compare))

    def _refine_local(
        self,
        problem: _MealProblem,
        x_start: np.ndarray,
        weights_qp: MacroWeights,
        l1: float
    ) -> np.ndarray:
        x = x_start.copy()
        cons = problem.constraints
        A = problem.A
        order = self._priority_order(A)

        best_obj = objective(totals(x, A), problem.target, weights_qp, l1, x)

        iterations = 0
        for _ in range(self.config.max_iterations):
            iterations += 1
            improved = False

            for i in order:
                c = cons[i]
                for direction in (1, -1):
                    candidate = x[i] + direction * c.move
                    residual = candidate - c.mandatory_base
                    if residual < c.residual_lo or residual > c.residual_hi:
                        continue

                    old = x[i]
                    x[i] = candidate
                    obj = objective(totals(x, A), problem.target, weights_qp, l1, x)

                    if obj + IMPROVEMENT_EPSILON < best_obj:
                        best_obj = obj
                        improved = True
                    else:
                        x[i] = old

            if not improved:
                break

        logger.debug(f"Local search finished after {iterations} sweeps (objective={best_obj:.4f})")
        return cons.project_all(x)

    # ----- Output -----

    def _build_output(self, problem: _MealProblem, x: np.ndarray) -> OptimizationOutput:
        A = problem.A
        t = totals(x, A)

        rows = []
        for i, ing in enumerate(problem.ingredients):
            w = float(x[i])
            cc = A[i, CARBO] * w
            pp = A[i, PROTEIN] * w
            ff = A[i, FAT] * w
            rows.append(IngredientPortion(
                name=ing.name,
                weight=round1(w),
                carbo=round1(cc),
                protein=round1(pp),
                fat=round1(ff),
                kcal=round_half_up(kcal(cc, pp, ff)),
            ))

        target = problem.target
        return OptimizationOutput(
            total=MacroTotals(
                carbo=round1(t.c),
                protein=round1(t.p),
                fat=round1(t.f),
                kcal=round_half_up(t.kcal),
            ),
            ingredients=[row for row in rows if row.weight > 0],
            deviation=MacroDeviation(
                carbo=round1(pct_dev(t.c, target.carbo)),
                protein=round1(pct_dev(t.p, target.protein)),
                fat=round1(pct_dev(t.f, target.fat)),
            ),
        )

    def _empty_infeasible(self, problem: _MealProblem) -> OptimizationOutput:
        return OptimizationOutput(
            total=MacroTotals(carbo=0, protein=0, fat=0, kcal=0),
            ingredients=[
                IngredientPortion(name=ing.name, weight=0, carbo=0, protein=0, fat=0, kcal=0)
                for ing in problem.ingredients
            ],
            deviation=MacroDeviation(carbo=100, protein=100, fat=100),
        )


def optimize_meal_to_macro(
    target: TargetLike,
    ingredients: Sequence[IngredientLike],
    config: OptimizerConfig = None,
    rng: random.Random = None
) -> OptimizationOutput:
    """Optimize ingredient weights toward a macro target (see MacroMealOptimizer.optimize)"""
    return MacroMealOptimizer(config=config, rng=rng).optimize(target, ingredients)
