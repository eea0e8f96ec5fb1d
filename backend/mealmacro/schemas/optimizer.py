# backend/mealmacro/schemas/optimizer.py

from pydantic import BaseModel, Field, validator
from typing import List, Optional

# Bounds stored as 0 (or float noise around it) mean "not set"
ZERO_EPSILON = 1e-6


class MacroTarget(BaseModel):
    """Macro goal for one meal, in grams"""
    name: str = ""
    carbo: float = Field(ge=0)
    protein: float = Field(ge=0)
    fat: float = Field(ge=0)

    @property
    def kcal(self) -> float:
        return 4 * self.carbo + 4 * self.protein + 9 * self.fat


class IngredientData(BaseModel):
    """Candidate ingredient with per-100g macros and optional gram constraints"""
    name: str
    carbo100g: float = Field(ge=0)
    protein100g: float = Field(ge=0)
    fat100g: float = Field(ge=0)
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)
    mandatory: Optional[float] = Field(default=None, ge=0)
    indivisible: Optional[float] = Field(default=None, gt=0)

    @validator('name')
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError('Name is required')
        return v.strip()


class MacroTotals(BaseModel):
    carbo: float
    protein: float
    fat: float
    kcal: int


class IngredientPortion(BaseModel):
    """One row of the result: grams used and what they contribute"""
    name: str
    weight: float
    carbo: float
    protein: float
    fat: float
    kcal: int


class MacroDeviation(BaseModel):
    """Percent deviation of each achieved macro from its target"""
    carbo: float
    protein: float
    fat: float

    def within(self, tolerance: float) -> bool:
        return (
            abs(self.carbo) <= tolerance and
            abs(self.protein) <= tolerance and
            abs(self.fat) <= tolerance
        )


class OptimizationOutput(BaseModel):
    """Optimizer result as handed to the presentation layer"""
    total: MacroTotals
    ingredients: List[IngredientPortion] = Field(default_factory=list)
    deviation: MacroDeviation


# ----- Persistence-side records -----

def _optional_bound(value: Optional[float]) -> Optional[float]:
    if value is None or abs(value) < ZERO_EPSILON:
        return None
    return value


class IngredientRecord(BaseModel):
    """Ingredient as stored; nullable bounds, display ordering and selection flag"""
    id: Optional[int] = None
    name: str
    carbo100g: float = Field(ge=0)
    protein100g: float = Field(ge=0)
    fat100g: float = Field(ge=0)
    min: Optional[float] = Field(default=None, ge=0)
    max: Optional[float] = Field(default=None, ge=0)
    mandatory: Optional[float] = Field(default=None, ge=0)
    indivisible: Optional[float] = Field(default=None, ge=0)
    sequence: Optional[int] = Field(default=None, ge=0)
    included: bool = True

    def to_optimizer_input(self) -> IngredientData:
        """Convert to optimizer input, treating zero bounds as unset"""
        return IngredientData(
            name=self.name,
            carbo100g=self.carbo100g,
            protein100g=self.protein100g,
            fat100g=self.fat100g,
            min=_optional_bound(self.min),
            max=_optional_bound(self.max),
            mandatory=_optional_bound(self.mandatory),
            indivisible=_optional_bound(self.indivisible),
        )


class MealRecord(BaseModel):
    """Stored meal whose macros act as the optimization target"""
    id: Optional[int] = None
    name: str
    carbo: float = Field(ge=0)
    protein: float = Field(ge=0)
    fat: float = Field(ge=0)

    def to_target(self) -> MacroTarget:
        return MacroTarget(name=self.name, carbo=self.carbo, protein=self.protein, fat=self.fat)


def prepare_ingredients(records: List[IngredientRecord]) -> List[IngredientData]:
    """Selected records in display order (sequence, then name), as optimizer input"""
    included = [r for r in records if r.included]
    included.sort(key=lambda r: (r.sequence is None, r.sequence or 0, r.name.lower()))
    return [r.to_optimizer_input() for r in included]


class CalculationSummary(BaseModel):
    """Target vs. achieved figures for one optimizer run"""
    target_name: str
    target_carbo: float
    target_protein: float
    target_fat: float
    target_kcal: float
    rows: List[IngredientPortion] = Field(default_factory=list)
    total_weight: float
    total_carbo: float
    total_protein: float
    total_fat: float
    total_kcal: int
    deviation_carbo: float
    deviation_protein: float
    deviation_fat: float
    deviation_kcal: float
