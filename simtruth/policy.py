"""Retention policy: pure decisions parameterized by :class:`ParticleListConfig`."""
from __future__ import annotations

from typing import Optional, Sequence, Tuple

from simtruth.config import ParticleListConfig

PRIMARY_PROCESS = "primary"


def normalize_primary_process(label: str) -> Tuple[str, bool]:
    r"""
    Normalize the truth process label of a primary track.

    Returns
    -------
    (process_name, from_primary_process)
        - ``"primary"`` -> ``("primary", True)``
        - ``"primary..."`` (prefix only) -> ``(label, False)``; the particle
          stays eligible for trajectories but its lineage is not flagged as
          canonical-primary.
        - anything else -> ``("primary", True)``; primary provenance wins.
    """
    if label == PRIMARY_PROCESS:
        return PRIMARY_PROCESS, True
    if label.startswith(PRIMARY_PROCESS):
        return label, False
    return PRIMARY_PROCESS, True


def match_not_stored(process: str, patterns: Sequence[str]) -> Optional[str]:
    """First pattern that is a substring of ``process``, or ``None``."""
    for p in patterns:
        if p in process:
            return p
    return None


def excluded_by_process(config: ParticleListConfig, process: str) -> Optional[str]:
    r"""
    Process-exclusion filter.

    Only active when ``keep_em_shower_daughters`` is ``False``; ``config``
    must be :meth:`~ParticleListConfig.resolved`.
    """
    if config.keep_em_shower_daughters:
        return None
    return match_not_stored(process, config.not_stored_physics)


def below_energy_cut(config: ParticleListConfig, kinetic_energy: float, pdg: int) -> bool:
    r"""
    Energy cut: ``True`` iff :math:`T < T_{cut}` and the particle is not a
    PDG-0 bookkeeping particle. Tracks at the threshold pass.
    """
    return kinetic_energy < config.energy_cut and pdg != 0


def keep_full_trajectory(
    config: ParticleListConfig,
    generator_storable: bool,
    from_primary_process: bool,
) -> bool:
    r"""
    Decide whether all intermediate trajectory points are stored.

    Evaluated in order: storage disabled -> ``False``; generator not
    storable -> ``False``; no primary-only restriction -> ``True``; otherwise
    ``from_primary_process``.
    """
    if not config.store_trajectories:
        return False
    if not generator_storable:
        return False
    if not config.keep_only_primary_full_trajectories:
        return True
    return from_primary_process
