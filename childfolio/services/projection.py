"""Future-value projections for the child's portfolio."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

from dateutil.relativedelta import relativedelta

DEFAULT_TARGET_AGES = (6, 12, 18, 21, 25)


@dataclass(frozen=True)
class Projection:
    age: int
    year: int
    projected_value: float


def project_future_value(
    current_value: float,
    monthly_contribution: float,
    years: float,
    annual_return_rate: float = 0.08,
) -> float:
    """Compound ``current_value`` monthly and add the annuity of contributions."""
    months = years * 12
    monthly_rate = annual_return_rate / 12
    if monthly_rate == 0:
        return float(current_value) + float(monthly_contribution) * months

    growth = (1 + monthly_rate) ** months
    return float(current_value) * growth + float(monthly_contribution) * ((growth - 1) / monthly_rate)


def generate_projections(
    current_value: float,
    monthly_contribution: float,
    birth_date: date,
    target_ages: Sequence[int] = DEFAULT_TARGET_AGES,
    today: Optional[date] = None,
    annual_return_rate: float = 0.08,
) -> List[Projection]:
    today = today or date.today()
    current_age = relativedelta(today, birth_date).years

    projections = []
    for age in target_ages:
        if age <= current_age:
            continue
        years_until = age - current_age
        projections.append(
            Projection(
                age=age,
                year=today.year + years_until,
                projected_value=project_future_value(
                    current_value, monthly_contribution, years_until, annual_return_rate
                ),
            )
        )
    return projections
