from __future__ import annotations

import re

from signaldesk.schemas.portfolio import PortfolioRequest, ValidationIssue, ValidationResult


SYMBOL_RE = re.compile(r"^\^?[A-Z][A-Z0-9.\-]{0,9}$")


def is_valid_symbol(symbol: str) -> bool:
    return bool(SYMBOL_RE.match(symbol))


def validate_symbols(symbols: list[str]) -> ValidationResult:
    issues: list[ValidationIssue] = []
    if not symbols:
        issues.append(
            ValidationIssue(field="symbols", level="fail", message="At least one symbol is required.")
        )
    invalid = [symbol for symbol in symbols if not is_valid_symbol(symbol)]
    if invalid:
        issues.append(
            ValidationIssue(
                field="symbols",
                level="fail",
                message="Invalid symbols: " + ", ".join(invalid),
            )
        )
    return _result(issues)


def validate_portfolio(payload: PortfolioRequest) -> ValidationResult:
    issues: list[ValidationIssue] = []

    if not payload.holdings:
        issues.append(
            ValidationIssue(
                field="holdings",
                level="fail",
                message="Portfolio must have at least one holding.",
            )
        )

    for index, holding in enumerate(payload.holdings, start=1):
        if not is_valid_symbol(holding.symbol.strip().upper()):
            issues.append(
                ValidationIssue(
                    field="holdings.symbol",
                    level="fail",
                    message=f"Holding {index}: invalid symbol.",
                )
            )
        if holding.shares <= 0:
            issues.append(
                ValidationIssue(
                    field="holdings.shares",
                    level="fail",
                    message=f"Holding {index}: shares must be positive.",
                )
            )
        if holding.avg_cost <= 0:
            issues.append(
                ValidationIssue(
                    field="holdings.avg_cost",
                    level="fail",
                    message=f"Holding {index}: average cost must be positive.",
                )
            )

    seen: set[str] = set()
    duplicates: set[str] = set()
    for holding in payload.holdings:
        key = holding.symbol.strip().upper()
        if key in seen:
            duplicates.add(key)
        seen.add(key)
    if duplicates:
        issues.append(
            ValidationIssue(
                field="holdings.symbol",
                level="warn",
                message="Duplicate symbols: " + ", ".join(sorted(duplicates)),
            )
        )

    if payload.total_value is not None and payload.total_value < 0:
        issues.append(
            ValidationIssue(
                field="total_value",
                level="fail",
                message="Total value must not be negative.",
            )
        )

    return _result(issues)


def _result(issues: list[ValidationIssue]) -> ValidationResult:
    status = "ok"
    if any(issue.level == "fail" for issue in issues):
        status = "fail"
    elif issues:
        status = "warn"
    return ValidationResult(status=status, issues=issues)
