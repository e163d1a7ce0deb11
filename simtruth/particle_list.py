from __future__ import annotations

from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple

from simtruth.particle import MCParticle


class ParticleStatus(Enum):
    """Lifecycle state of a track ID in a :class:`ParticleList`."""
    ACTIVE = "active"
    PENDING_TRANSFER = "pending_transfer"
    REMOVED = "removed"


class ParticleList:
    r"""
    Ordered, ID-indexed arena of :class:`~simtruth.particle.MCParticle` records.

    Insertion order is creation order. Every ID ever added keeps a status:
    ``ACTIVE`` while the track is transported, ``PENDING_TRANSFER`` once it
    ended, ``REMOVED`` after it was erased or moved out. Removed records are
    deleted from the arena (not nulled), so iteration only ever sees live
    records and no ID maps to more than one record.

    Parent links are never object references; callers always re-look-up by
    ID and treat a miss as an orphan.
    """

    __slots__ = ("_particles", "_status")

    def __init__(self) -> None:
        self._particles: Dict[int, MCParticle] = {}
        self._status: Dict[int, ParticleStatus] = {}

    # ------------------------------------------------------------------
    # Mapping-like access
    def __len__(self) -> int:
        return len(self._particles)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._particles

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._particles))

    def __getitem__(self, track_id: int) -> MCParticle:
        return self._particles[track_id]

    def get(self, track_id: int) -> Optional[MCParticle]:
        return self._particles.get(track_id)

    def items(self) -> List[Tuple[int, MCParticle]]:
        """Snapshot of ``(track_id, particle)`` pairs in creation order."""
        return list(self._particles.items())

    def values(self) -> List[MCParticle]:
        return list(self._particles.values())

    def known_particle(self, track_id: int) -> bool:
        """``True`` if ``track_id`` maps to a live record."""
        return track_id in self._particles

    def status(self, track_id: int) -> Optional[ParticleStatus]:
        """Status of ``track_id``; ``None`` if the ID was never added."""
        return self._status.get(track_id)

    def mother_of(self, track_id: int) -> Optional[int]:
        p = self._particles.get(track_id)
        return None if p is None else p.mother

    def highest_id(self) -> Optional[int]:
        return max(self._particles) if self._particles else None

    # ------------------------------------------------------------------
    # Mutation
    def add(self, particle: MCParticle) -> None:
        r"""
        Insert a record as ``ACTIVE``.

        Raises
        ------
        KeyError
            If a live record already uses the same track ID.
        """
        tid = particle.track_id
        if tid in self._particles:
            raise KeyError(f"Track ID {tid} is already in the particle list.")
        self._particles[tid] = particle
        self._status[tid] = ParticleStatus.ACTIVE

    def mark_done(self, track_id: int) -> None:
        """Move a live record from ``ACTIVE`` to ``PENDING_TRANSFER``."""
        if track_id in self._particles:
            self._status[track_id] = ParticleStatus.PENDING_TRANSFER

    def erase(self, track_id: int) -> Optional[MCParticle]:
        """Remove a record entirely; returns it, or ``None`` if it was not live."""
        p = self._particles.pop(track_id, None)
        if p is not None:
            self._status[track_id] = ParticleStatus.REMOVED
        return p

    def take(self, track_id: int) -> MCParticle:
        r"""
        Transfer ownership of a record to the caller.

        Raises
        ------
        KeyError
            If ``track_id`` is not live.
        """
        p = self._particles.pop(track_id)
        self._status[track_id] = ParticleStatus.REMOVED
        return p

    def archive(self, particle: MCParticle) -> None:
        r"""
        Keep a reduced copy (no trajectory) of ``particle``.

        The ID stays known, so mother lookups still resolve through it, but the
        entry is never output as a trajectory-bearing particle.
        """
        tid = particle.track_id
        self._particles[tid] = particle.reduced()
        self._status[tid] = ParticleStatus.PENDING_TRANSFER

    def clear(self) -> None:
        self._particles.clear()
        self._status.clear()
