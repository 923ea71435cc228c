"""
Core modules for Cost Advisor.

This package contains metric aggregation, cost estimation, the
recommendation rules and engine, and the recommendation lifecycle.
"""
