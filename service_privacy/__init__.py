"""
Privacy Preference Service package for the connected-vehicle privacy engine.
"""
