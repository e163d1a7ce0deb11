from __future__ import annotations

import numpy as np
from numba import njit

__all__ = ["range_within_margin", "impact_sq"]


@njit(cache=True)
def impact_sq(points: np.ndarray, lo: int, hi: int) -> np.ndarray:
    r"""
    Squared perpendicular distances of the interior points of a range to its chord.

    For the chord :math:`a=P_{lo}\rightarrow b=P_{hi}` with unit direction
    :math:`\hat d=(b-a)/\|b-a\|` and :math:`v_i = P_i - a`,

    .. math::

        \delta_i^2 \;=\; \bigl\| v_i - (\hat d\cdot v_i)\,\hat d \bigr\|^2,
        \qquad lo < i < hi.

    If the endpoints coincide :math:`\hat d=0` and :math:`\delta_i = \|v_i\|`.

    Parameters
    ----------
    points : ndarray, shape (N, 3)
        Spatial trajectory points (float64).
    lo, hi : int
        Range endpoints, ``hi >= lo + 2`` for a non-empty result.

    Returns
    -------
    ndarray, shape (max(hi - lo - 1, 0),)
    """
    n = max(hi - lo - 1, 0)
    out = np.empty(n, dtype=np.float64)
    dx = points[hi, 0] - points[lo, 0]
    dy = points[hi, 1] - points[lo, 1]
    dz = points[hi, 2] - points[lo, 2]
    norm = np.sqrt(dx * dx + dy * dy + dz * dz)
    if norm > 0.0:
        dx /= norm
        dy /= norm
        dz /= norm
    for k in range(n):
        i = lo + 1 + k
        vx = points[i, 0] - points[lo, 0]
        vy = points[i, 1] - points[lo, 1]
        vz = points[i, 2] - points[lo, 2]
        proj = dx * vx + dy * vy + dz * vz
        px = vx - proj * dx
        py = vy - proj * dy
        pz = vz - proj * dz
        out[k] = px * px + py * py + pz * pz
    return out


@njit(cache=True)
def range_within_margin(points: np.ndarray, lo: int, hi: int, margin_sq: float) -> bool:
    """``True`` if every interior point of ``[lo, hi]`` is within the margin of the chord."""
    d2 = impact_sq(points, lo, hi)
    for k in range(d2.shape[0]):
        if d2[k] > margin_sq:
            return False
    return True
