"""
Rule generation: questionnaire and domain catalogs, the rule generator
and XPref XML serialization.
"""
