# COA FinSight - Chart-of-Accounts Aggregation & Financial Analysis Engine
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
COA FinSight
------------

A financial analysis engine that turns a flat ledger snapshot of posted
account balances into structured statements and analytics. Account codes
are classified into statement sections through configurable code ranges
(the Spanish PGC is bundled), so the engine itself is not tied to one
chart of accounts.

Main capabilities:
- balance sheet (assets / equity and liabilities) and income statement trees,
- balance check (Assets == Liabilities + Equity within a tolerance),
- canonical and derived measures, financial ratios with benchmark status
  and an aggregate health score,
- aging buckets for open receivables and payables,
- budget vs. actual variance reports with trend tags,
- comparative statements over several periods.

COA FinSight separates computation (engine, ratios, aging, variance),
configuration (TOML) and presentation (pandas views), and performs no
persistence of its own.

Version: 0.1.0

Usage:
    from coa_finsight.engine import analyze_financials
    from coa_finsight.io import read_accounts_csv

    analysis = analyze_financials(read_accounts_csv("balances.csv"))
"""

__all__ = [
    "accounts",
    "aging",
    "config",
    "engine",
    "exceptions",
    "io",
    "mapping",
    "models",
    "multi_periods",
    "ratios",
    "variance",
    "views",
]

__version__ = "0.1.0"
