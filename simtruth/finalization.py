from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from simtruth.errors import LogicError
from simtruth.genealogy import GenealogyStore
from simtruth.particle import NO_GENERATED_PARTICLE_INDEX, MCParticle, ParticleLite
from simtruth.particle_list import ParticleList
from simtruth.truth import MCTruth, MCTruthHandle, iter_truths

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TruthAssociation:
    r"""
    Link between a truth record and one output particle.

    Attributes
    ----------
    truth : MCTruth
        The originating truth record.
    truth_index : int
        Flat index of ``truth`` in the event's truth handles.
    particle : MCParticle
        The output particle (same object as in :attr:`EventProducts.particles`).
    generated_particle_index : int
        Index of the generated particle that seeded ``particle`` (primaries
        only), else :data:`~simtruth.particle.NO_GENERATED_PARTICLE_INDEX`.
    """
    truth: MCTruth
    truth_index: int
    particle: MCParticle
    generated_particle_index: int = NO_GENERATED_PARTICLE_INDEX

    @property
    def has_generated_particle_index(self) -> bool:
        return self.generated_particle_index != NO_GENERATED_PARTICLE_INDEX


@dataclass(slots=True)
class EventProducts:
    r"""
    Output collections of one event.

    Attributes
    ----------
    particles : list[MCParticle]
        Retained particles, grouped by truth record then in creation order.
    dropped_particles : list[ParticleLite] or None
        Reduced records of dropped particles with a trajectory; ``None`` when
        drop retention is off.
    ancestry : dict[int, list[int]]
        Ultimate ancestor ID -> sorted IDs of its discarded descendants.
    associations : list[TruthAssociation]
        One entry per retained particle.
    not_stored_counts : dict[str, int]
        Rejected tracks per not-stored process pattern.
    """
    particles: List[MCParticle] = field(default_factory=list)
    dropped_particles: Optional[List[ParticleLite]] = None
    ancestry: Dict[int, List[int]] = field(default_factory=dict)
    associations: List[TruthAssociation] = field(default_factory=list)
    not_stored_counts: Dict[str, int] = field(default_factory=dict)

    def particle_by_id(self, track_id: int) -> Optional[MCParticle]:
        for p in self.particles:
            if p.track_id == track_id:
                return p
        return None

    @property
    def track_ids(self) -> List[int]:
        return [p.track_id for p in self.particles]


def update_daughter_information(particles: ParticleList) -> int:
    r"""
    Append every retained particle to its mother's daughter list.

    Primaries (mother :math:`\le 0`) are skipped. A mother missing from the
    list is an orphan link (e.g. the mother failed the energy cut while the
    daughter passed) and is silently ignored.

    Returns
    -------
    int
        Number of daughter links added.
    """
    added = 0
    for track_id, particle in particles.items():
        mother_id = particle.mother
        if mother_id <= 0:
            continue
        mother = particles.get(mother_id)
        if mother is None:
            logger.debug("Track %d is an orphan: mother %d not in the particle list.", track_id, mother_id)
            continue
        mother.add_daughter(track_id)
        added += 1
    return added


def collect_dropped_particles(
    dropped: ParticleList,
    truth_index: Mapping[int, int],
    truths: Mapping[int, MCTruth],
) -> List[ParticleLite]:
    r"""
    Reduce the dropped list to :class:`ParticleLite` records.

    Only entries with a non-empty trajectory and status code 1 are kept;
    archived (trajectory-less) entries are skipped. The origin code comes from
    the truth record the particle inherited.
    """
    out: List[ParticleLite] = []
    for track_id, p in dropped.items():
        if not p.trajectory:
            continue
        if p.status_code != 1:
            continue
        truth = truths.get(truth_index.get(track_id, -1))
        out.append(ParticleLite.from_particle(p, origin=truth.origin if truth is not None else 0))
    return out


def finalize_event(
    store: GenealogyStore,
    truth_handles: Sequence[MCTruthHandle],
    dropped: Optional[ParticleList] = None,
    *,
    not_stored_counts: Optional[Dict[str, int]] = None,
) -> EventProducts:
    r"""
    Move retained particles out of ``store`` and build the output collections.

    For each truth record (flat index :math:`n`) the retained particles whose
    inherited truth index equals :math:`n` are transferred, in creation
    order, and associated with that record. Daughter backfill and the
    track-ID offset are handled by the caller beforehand.

    Raises
    ------
    LogicError
        If a matching particle has no trajectory samples, or has mother 0 but
        no generated-particle index.
    """
    products = EventProducts(not_stored_counts=dict(not_stored_counts or {}))
    pending = store.particles
    truths: Dict[int, MCTruth] = {}

    logger.info("Truth handles: %d", len(truth_handles))
    for n, handle, truth in iter_truths(truth_handles):
        truths[n] = truth
        logger.debug("Truth record %d (%s): %d generated particles", n, handle.label, truth.n_particles)
        for track_id, p in pending.items():
            if store.truth_index.get(track_id) != n:
                continue
            if p.n_trajectory_points == 0:
                raise LogicError(f"Retained particle {track_id} has no trajectory points.")
            gen_index = store.primary_truth.get(track_id, NO_GENERATED_PARTICLE_INDEX)
            if gen_index == NO_GENERATED_PARTICLE_INDEX and p.mother == 0:
                raise LogicError(
                    f"Failed to match primary particle {track_id} with particles "
                    f"from the truth record '{handle.label}'."
                )
            particle = pending.take(track_id)
            products.particles.append(particle)
            products.associations.append(TruthAssociation(truth, n, particle, gen_index))

    if len(pending):
        logger.warning(
            "%d retained particles matched no truth record and are discarded: %s",
            len(pending), list(pending)[:10],
        )
        for track_id in pending:
            pending.erase(track_id)

    if dropped is not None:
        products.dropped_particles = collect_dropped_particles(dropped, store.truth_index, truths)

    products.ancestry = store.ancestry_map()
    logger.debug(
        "Finalized event: %d particles, %d associations",
        len(products.particles), len(products.associations),
    )
    return products
