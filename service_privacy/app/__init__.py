"""
Privacy Preference Service package.

This package turns a driver's privacy preferences into prioritized rules
and evaluates them against the vehicle's runtime context. It provides:

- app.rules: Rule model, context predicates, stream evaluation and
  conflict resolution.
- app.generator: Rule generation from questionnaire answers, domain
  configurations and privacy levels, plus XPref XML serialization.
- app.policy: Service policy catalog, policy matching and scoring.
- app.decision: Final decision synthesis and record transformations.
- app.persistence: Rule store and evaluation history.
- app.service: Facade wiring the pipeline together.

Guidelines:
- Evaluation never mutates stored rules.
- Keep decisions deterministic and observable (logs + explanations).
"""
