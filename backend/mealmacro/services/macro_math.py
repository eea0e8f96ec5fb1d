# backend/mealmacro/services/macro_math.py

import math
from dataclasses import dataclass
from typing import List

import numpy as np

from mealmacro.schemas.optimizer import IngredientData, MacroTarget

# Column order of the density matrix
CARBO, PROTEIN, FAT = 0, 1, 2

KCAL_PER_GRAM = np.array([4.0, 4.0, 9.0])


@dataclass(frozen=True)
class MacroWeights:
    """Quadratic penalty per macro in the objective"""
    wp: float
    wf: float
    wc: float


@dataclass
class Totals:
    c: float
    p: float
    f: float
    kcal: float


def kcal(c: float, p: float, f: float) -> float:
    return 4 * c + 4 * p + 9 * f


def density_matrix(ingredients: List[IngredientData]) -> np.ndarray:
    """n x 3 matrix of grams of carbo/protein/fat per gram of ingredient"""
    A = np.zeros((len(ingredients), 3))
    for i, ing in enumerate(ingredients):
        A[i, CARBO] = ing.carbo100g / 100
        A[i, PROTEIN] = ing.protein100g / 100
        A[i, FAT] = ing.fat100g / 100
    return A


def totals(weights: np.ndarray, A: np.ndarray) -> Totals:
    if len(weights) == 0:
        return Totals(0.0, 0.0, 0.0, 0.0)
    c, p, f = (float(v) for v in weights @ A)
    return Totals(c=c, p=p, f=f, kcal=kcal(c, p, f))


def objective(
    t: Totals,
    target: MacroTarget,
    weights_qp: MacroWeights,
    l1: float,
    weights: np.ndarray
) -> float:
    """Weighted squared macro error plus an L1 penalty on grams used"""
    dP = t.p - target.protein
    dF = t.f - target.fat
    dC = t.c - target.carbo
    quad = weights_qp.wp * dP * dP + weights_qp.wf * dF * dF + weights_qp.wc * dC * dC
    return quad + l1 * float(np.abs(weights).sum())


def pct_dev(total: float, target: float) -> float:
    if target == 0:
        if total == 0:
            return 0.0
        return 100.0 if total > 0 else -100.0
    return (total - target) / target * 100


def round_half_up(value: float) -> float:
    return math.floor(value + 0.5)


def round1(value: float) -> float:
    return round_half_up(value * 10) / 10
