"""
Uncertainty propagation for metric distances.

Pixel noise is pushed through the calibrated homography by a seeded Monte Carlo
ensemble, a kernel-weighted bias model learns a local correction from validation
segments, and both are merged into symmetric confidence intervals.
"""
