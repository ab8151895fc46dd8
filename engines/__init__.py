"""
Pegwatch Engines
Risk scoring and per-coin monitoring loops
"""
