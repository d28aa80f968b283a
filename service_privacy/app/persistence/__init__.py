"""
Persistence layer for generated rulesets and evaluation history.
"""
