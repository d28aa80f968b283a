"""
Service policy catalog, policy matching and policy scoring.
"""
