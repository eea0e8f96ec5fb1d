# backend/conftest.py
"""
Pytest configuration and fixtures for the mealmacro tests
Provides reusable targets, ingredient catalogs and seeded optimizers
"""

import random

import pytest

from mealmacro.schemas.optimizer import IngredientData, MacroTarget
from mealmacro.services.meal_macro_optimizer import MacroMealOptimizer, OptimizerConfig


# ===== TARGET FIXTURES =====

@pytest.fixture
def lunch_target():
    """Balanced lunch target"""
    return MacroTarget(name="Lunch", carbo=60, protein=30, fat=15)


@pytest.fixture
def breakfast_target():
    """Breakfast target used with the constrained catalog"""
    return MacroTarget(name="Breakfast", carbo=80, protein=45, fat=25)


# ===== INGREDIENT FIXTURES =====

@pytest.fixture
def lunch_ingredients():
    """Chicken, rice and a capped amount of oil"""
    return [
        IngredientData(name="Chicken breast", carbo100g=0, protein100g=30, fat100g=5),
        IngredientData(name="Cooked rice", carbo100g=28, protein100g=2.7, fat100g=0.3),
        IngredientData(name="Olive oil", carbo100g=0, protein100g=0, fat100g=100, max=10),
    ]


@pytest.fixture
def constrained_ingredients():
    """Catalog exercising every kind of constraint"""
    return [
        IngredientData(name="Whey scoop", carbo100g=8, protein100g=80, fat100g=6, max=90, indivisible=30),
        IngredientData(name="Oats", carbo100g=60, protein100g=13, fat100g=7, min=40, max=120, indivisible=10),
        IngredientData(name="Peanut butter", carbo100g=20, protein100g=25, fat100g=50, mandatory=15, max=40),
        IngredientData(name="Banana", carbo100g=23, protein100g=1.1, fat100g=0.3, max=240, indivisible=120),
    ]


# ===== OPTIMIZER FIXTURES =====

@pytest.fixture
def seeded_rng():
    return random.Random(1234)


@pytest.fixture
def optimizer(seeded_rng):
    """Optimizer with default tunables and a reproducible random source"""
    return MacroMealOptimizer(config=OptimizerConfig(), rng=seeded_rng)


# ===== PYTEST CONFIGURATION =====

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "slow: Slow running tests"
    )
