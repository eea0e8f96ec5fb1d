"""
Tests for the macro density model and the totals/objective helpers
"""

import sys
import os

import numpy as np
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../..')))

from mealmacro.schemas.optimizer import IngredientData, MacroTarget
from mealmacro.services.macro_math import (
    MacroWeights, density_matrix, kcal, objective, pct_dev, round1, round_half_up, totals
)

pytestmark = pytest.mark.unit


def test_density_matrix_is_per_gram():
    A = density_matrix([
        IngredientData(name="Chicken breast", carbo100g=0, protein100g=30, fat100g=5),
        IngredientData(name="Cooked rice", carbo100g=28, protein100g=2.7, fat100g=0.3),
    ])

    assert A.shape == (2, 3)
    assert A[0] == pytest.approx([0.0, 0.3, 0.05])
    assert A[1] == pytest.approx([0.28, 0.027, 0.003])


def test_kcal_uses_4_4_9():
    assert kcal(10, 10, 10) == 170
    assert kcal(0, 0, 1) == 9


def test_totals_sums_weighted_densities():
    A = density_matrix([
        IngredientData(name="Chicken breast", carbo100g=0, protein100g=30, fat100g=5),
        IngredientData(name="Olive oil", carbo100g=0, protein100g=0, fat100g=100),
    ])

    t = totals(np.array([100.0, 10.0]), A)

    assert t.c == pytest.approx(0)
    assert t.p == pytest.approx(30)
    assert t.f == pytest.approx(15)
    assert t.kcal == pytest.approx(4 * 30 + 9 * 15)


def test_totals_of_empty_vector():
    t = totals(np.zeros(0), np.zeros((0, 3)))
    assert (t.c, t.p, t.f, t.kcal) == (0.0, 0.0, 0.0, 0.0)


@pytest.mark.parametrize("total,target,expected", [
    (0, 0, 0),
    (5, 0, 100),
    (-5, 0, -100),
    (12, 10, 20),
    (15, 20, -25),
])
def test_pct_dev(total, target, expected):
    assert pct_dev(total, target) == pytest.approx(expected)


def test_objective_adds_l1_penalty():
    target = MacroTarget(name="t", carbo=0, protein=10, fat=0)
    A = np.array([[0.0, 0.8, 0.0]])
    weights = np.array([10.0])

    value = objective(totals(weights, A), target, MacroWeights(wp=1.0, wf=0.0, wc=0.0), 0.5, weights)

    # (8 - 10)^2 + 0.5 * 10
    assert value == pytest.approx(9.0)


def test_objective_weights_each_macro():
    target = MacroTarget(name="t", carbo=10, protein=10, fat=10)
    A = np.array([[1.0, 1.0, 1.0]])
    weights = np.array([12.0])

    value = objective(totals(weights, A), target, MacroWeights(wp=1.0, wf=0.25, wc=0.1), 0.0, weights)

    assert value == pytest.approx(4 * (1.0 + 0.25 + 0.1))


def test_rounding_is_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -2
    assert round1(2.25) == 2.3
    assert round1(-2.25) == -2.2
    assert round1(0.04) == 0.0
