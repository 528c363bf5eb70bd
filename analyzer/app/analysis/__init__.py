"""
Progressive contract risk analysis engine.

This package provides the building blocks driven by the Track
Reconciler: near-duplicate detection, the category catalog, the retry
policy, the category sequencer and the deep-analysis stepper.

None of these components hold per-document state; every call receives
its cursor and context explicitly.
"""
