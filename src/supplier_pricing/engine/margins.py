"""
Margin Analyzer - Offer line margins and price suggestions.

Pure functions: no store or network access.
"""
from typing import Iterable, Optional

import pandas as pd

from .models import MarginAnalysis, MarginLine, PriceSuggestion, PriceSuggestionResult
from .validation import validate_amount


def analyze_margins(items: Iterable[dict], minimum_margin_percent: float = 15.0) -> MarginAnalysis:
    """
    Analyze margins across line items.

    Args:
        items: dicts with "cost" and "sale" (line totals) and an optional "description"
        minimum_margin_percent: lines below this margin are flagged

    Margin is profit over sale price; a line with zero sale has 0% margin.
    """
    df = pd.DataFrame(list(items), columns=['description', 'cost', 'sale'])
    if df.empty:
        return MarginAnalysis(
            total_cost=0.0, total_sale=0.0, total_profit=0.0, overall_margin_percent=0.0,
            items=[], below_minimum=[], average_margin_percent=0.0,
            minimum_margin_percent=minimum_margin_percent,
        )

    df['description'] = df['description'].fillna('Unnamed line').astype(str)
    for col in ('cost', 'sale'):
        df[col] = df[col].map(lambda v, c=col: validate_amount(v, c.title()))

    df['profit'] = df['sale'] - df['cost']
    df['margin'] = (df['profit'] / df['sale'].where(df['sale'] > 0) * 100).fillna(0.0)
    df['below'] = df['margin'] < minimum_margin_percent

    lines = [
        MarginLine(
            description=row.description,
            cost=round(row.cost, 2),
            sale=round(row.sale, 2),
            profit=round(row.profit, 2),
            margin_percent=round(row.margin, 1),
            is_below_minimum=bool(row.below),
        )
        for row in df.itertuples(index=False)
    ]

    total_cost = float(df['cost'].sum())
    total_sale = float(df['sale'].sum())
    total_profit = total_sale - total_cost
    overall = total_profit / total_sale * 100 if total_sale > 0 else 0.0

    weakest = df.loc[df['margin'].idxmin()]
    strongest = df.loc[df['margin'].idxmax()]
    below = [line for line in lines if line.is_below_minimum]

    warnings = []
    if below:
        warnings.append(f"{len(below)} of {len(lines)} lines have a margin below {minimum_margin_percent}%")
    if overall < minimum_margin_percent:
        warnings.append(f"Overall margin {overall:.1f}% is below the minimum of {minimum_margin_percent}%")
    if weakest['margin'] < 0:
        warnings.append(f"\"{weakest['description']}\" has a negative margin ({weakest['margin']:.1f}%)")

    return MarginAnalysis(
        total_cost=round(total_cost, 2),
        total_sale=round(total_sale, 2),
        total_profit=round(total_profit, 2),
        overall_margin_percent=round(overall, 1),
        items=lines,
        below_minimum=below,
        average_margin_percent=round(sum(l.margin_percent for l in lines) / len(lines), 1),
        minimum_margin_percent=minimum_margin_percent,
        weakest_item=str(weakest['description']),
        strongest_item=str(strongest['description']),
        warnings=warnings,
    )


def suggest_price(
    cost_price: float,
    target_margin: float,
    historical_prices: Optional[Iterable[float]] = None,
) -> PriceSuggestionResult:
    """
    Suggest a sale price with at least the target margin.

    The target price is cost × (1 + margin/100). When accepted historical
    prices exist, the recommendation is raised to their 75th percentile if
    that is higher.
    """
    cost_price = validate_amount(cost_price, "Cost price")
    target_margin = validate_amount(target_margin, "Target margin")

    target_price = round(cost_price * (1 + target_margin / 100.0), 2)
    result = PriceSuggestionResult(
        cost_price=cost_price,
        target_margin_percent=target_margin,
        recommended_price=target_price,
        suggestions=[PriceSuggestion(
            suggested_price=target_price,
            reason=f"Target margin of {target_margin}%",
            confidence='high',
            based_on='Calculated from cost price and target margin',
        )],
    )

    history = pd.Series([p for p in (historical_prices or []) if p is not None and p > 0], dtype=float)
    if history.empty:
        return result

    p75 = round(float(history.quantile(0.75)), 2)
    p75_margin = (p75 - cost_price) / p75 * 100 if p75 > 0 else 0.0
    result.suggestions.append(PriceSuggestion(
        suggested_price=p75,
        reason=f"75th percentile of accepted prices (margin {p75_margin:.1f}%)",
        confidence='high' if len(history) >= 10 else 'medium',
        based_on=f"Based on {len(history)} accepted offers",
    ))

    if len(history) >= 3:
        average = round(float(history.mean()), 2)
        avg_margin = (average - cost_price) / average * 100 if average > 0 else 0.0
        result.suggestions.append(PriceSuggestion(
            suggested_price=average,
            reason=f"Historical average price (margin {avg_margin:.1f}%)",
            confidence='medium',
            based_on=f"Based on {len(history)} accepted offers",
        ))

    result.recommended_price = max(target_price, p75)
    return result
