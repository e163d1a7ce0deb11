from __future__ import annotations

import logging
from typing import Container, Dict, List, Optional, Set

from simtruth.particle import NO_PARTICLE_ID
from simtruth.particle_list import ParticleList

logger = logging.getLogger(__name__)


class GenealogyStore:
    r"""
    Authoritative per-event genealogy: retained particles plus the auxiliary
    maps needed to resolve parentage of discarded tracks.

    Attributes
    ----------
    particles : ParticleList
        Retained particle records (creation order).
    parent_ids : dict[int, int]
        Parent-substitution map. Holds an entry only for tracks that were
        filtered out or whose parent could not be found, so that later
        descendants can be re-parented.
    dropped_tracks : dict[int, set[int]]
        Ancestry map: ultimate ancestor -> IDs of discarded descendants.
    truth_index : dict[int, int]
        Track ID -> flat index of the originating truth record.
    primary_keep : dict[int, bool]
        Track ID -> whether the lineage starts at a truth particle whose
        process is exactly ``"primary"``.
    primary_truth : dict[int, int]
        Primary track ID -> generated-particle index in its truth record.
    target_ids : dict[int, int]
        Track ID -> ID that energy deposits of the track should be credited to
        (the track itself, ``-ancestor`` for dropped tracks, or
        :data:`~simtruth.particle.NO_PARTICLE_ID`).
    """

    __slots__ = (
        "particles",
        "parent_ids",
        "dropped_tracks",
        "truth_index",
        "primary_keep",
        "primary_truth",
        "target_ids",
    )

    def __init__(self) -> None:
        self.particles = ParticleList()
        self.parent_ids: Dict[int, int] = {}
        self.dropped_tracks: Dict[int, Set[int]] = {}
        self.truth_index: Dict[int, int] = {}
        self.primary_keep: Dict[int, bool] = {}
        self.primary_truth: Dict[int, int] = {}
        self.target_ids: Dict[int, int] = {}

    def clear(self) -> None:
        self.particles.clear()
        self.parent_ids.clear()
        self.dropped_tracks.clear()
        self.truth_index.clear()
        self.primary_keep.clear()
        self.primary_truth.clear()
        self.target_ids.clear()

    def known_particle(self, track_id: int) -> bool:
        return self.particles.known_particle(track_id)

    def get_parentage(self, track_id: int, also_known: Optional[Container[int]] = None) -> int:
        r"""
        Ultimate ancestor of ``track_id`` via the parent-substitution map.

        Starting from ``track_id``, repeatedly replace the current ID by its
        substituted parent until an ID with no further substitution is reached.
        That final ID is returned if it is a retained particle (or is in
        ``also_known``, e.g. the dropped-particle list); otherwise, or if
        ``track_id`` has no entry at all, the result is
        :data:`~simtruth.particle.NO_PARTICLE_ID`.

        The walk is bounded by ``len(parent_ids) + 1`` hops. A causal event
        stream never produces a cycle; if one is met anyway it is logged and
        the sentinel is returned.
        """
        current = track_id
        ancestor = NO_PARTICLE_ID
        for _ in range(len(self.parent_ids) + 1):
            nxt = self.parent_ids.get(current)
            if nxt is None:
                break
            ancestor = current = nxt
        else:
            logger.error("Cycle in parent-substitution map while resolving track %d.", track_id)
            return NO_PARTICLE_ID

        if ancestor == NO_PARTICLE_ID:
            return NO_PARTICLE_ID
        if self.known_particle(ancestor) or (also_known is not None and ancestor in also_known):
            return ancestor
        return NO_PARTICLE_ID

    def record_dropped(self, track_id: int, parent_id: int) -> int:
        r"""
        Register a discarded track under its ultimate ancestor.

        Adds ``track_id -> parent_id`` to the substitution map, files the track
        in the ancestry map under its ultimate retained ancestor (or the
        sentinel) and sets its target ID to ``-ancestor`` (or the sentinel).

        Returns
        -------
        int
            The ancestry-map key used.
        """
        self.parent_ids[track_id] = parent_id
        ancestor = self.get_parentage(track_id)
        self.dropped_tracks.setdefault(ancestor, set()).add(track_id)
        self.target_ids[track_id] = NO_PARTICLE_ID if ancestor == NO_PARTICLE_ID else -ancestor
        return ancestor

    def ancestry_map(self) -> Dict[int, List[int]]:
        """Copy of the ancestry map with sorted descendant lists."""
        return {k: sorted(v) for k, v in self.dropped_tracks.items()}
