"""
Rules engine package.

Defines the rule model and the evaluation pipeline. Rules carry a PET
effect, a priority and optional context predicates; the engine splits
them into active and inactive sets for the current vehicle context and
resolves competing active rules by priority and then PET strength.

Modules of interest:
- models: Data classes for rules, predicates, transforms and results.
- predicates: Evaluation of a single context predicate.
- resolver: Conflict resolution and user tie-break handling.
- engine: Stream evaluation and the end-to-end evaluation pipeline.
"""
