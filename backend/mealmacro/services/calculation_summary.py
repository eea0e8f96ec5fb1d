# backend/mealmacro/services/calculation_summary.py

import logging

from mealmacro.schemas.optimizer import CalculationSummary, MacroTarget, OptimizationOutput

logger = logging.getLogger(__name__)


def summarize_calculation(target: MacroTarget, output: OptimizationOutput) -> CalculationSummary:
    """Combine target and optimizer output into the figures shown to the user"""
    target_kcal = target.kcal
    total_weight = sum(row.weight for row in output.ingredients)

    if target_kcal == 0:
        deviation_kcal = 0.0
    else:
        deviation_kcal = (output.total.kcal - target_kcal) / target_kcal * 100

    logger.debug(f"Summary for '{target.name}': {total_weight:.1f}g, {output.total.kcal} kcal ({deviation_kcal:+.1f}%)")

    return CalculationSummary(
        target_name=target.name,
        target_carbo=target.carbo,
        target_protein=target.protein,
        target_fat=target.fat,
        target_kcal=target_kcal,
        rows=list(output.ingredients),
        total_weight=total_weight,
        total_carbo=output.total.carbo,
        total_protein=output.total.protein,
        total_fat=output.total.fat,
        total_kcal=output.total.kcal,
        deviation_carbo=output.deviation.carbo,
        deviation_protein=output.deviation.protein,
        deviation_fat=output.deviation.fat,
        deviation_kcal=deviation_kcal,
    )
