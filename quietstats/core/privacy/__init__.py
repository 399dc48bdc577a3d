from __future__ import annotations

"""
Privacy-preserving event pipeline.

This package provides:
- structural validation of tracked events
- consent gating (client-side queue)
- sanitization (PII keys, tracking params, id hashing)
- field encryption and one-way identifier hashing
- retention sweeps and on-demand erasure

Raw PII never reaches storage.
"""
