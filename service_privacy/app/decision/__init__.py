"""
Decision synthesis and record transformations.
"""
