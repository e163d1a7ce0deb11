from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence, Tuple

from simtruth.config import ParticleListConfig
from simtruth.events import PrimaryInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GeneratedParticle:
    """A particle as written by the event generator."""
    pdg: int
    process: str = "primary"
    status_code: int = 1


@dataclass(slots=True)
class MCTruth:
    """One generator interaction: an origin code and its generated particles."""
    origin: int = 0
    particles: List[GeneratedParticle] = field(default_factory=list)

    @property
    def n_particles(self) -> int:
        return len(self.particles)


@dataclass(slots=True)
class MCTruthHandle:
    r"""
    The truth records produced by one generator module.

    ``label`` is the generator (producer) label used by the
    ``keep_gen_trajectories`` allow-list.
    """
    label: str
    truths: List[MCTruth] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.truths)


def iter_truths(handles: Sequence[MCTruthHandle]) -> Iterator[Tuple[int, MCTruthHandle, MCTruth]]:
    r"""
    Iterate over all truth records with their **flat** truth index.

    The flat index counts :class:`MCTruth` objects across ``handles`` in
    order; primary provenance and the generator keep-map use the same index.

    Yields
    ------
    (int, MCTruthHandle, MCTruth)
    """
    n = 0
    for handle in handles:
        for truth in handle.truths:
            yield n, handle, truth
            n += 1


def primary_info(
    handles: Sequence[MCTruthHandle],
    truth_index: int,
    particle_index: int,
) -> PrimaryInfo:
    r"""
    Look up the provenance of a primary track.

    Returns the :class:`PrimaryInfo` carrying the generated particle's process
    label.

    Raises
    ------
    IndexError
        If either index does not exist in ``handles``.
    """
    for n, _handle, truth in iter_truths(handles):
        if n == truth_index:
            if not 0 <= particle_index < len(truth.particles):
                raise IndexError(
                    f"Truth record {truth_index} has no generated particle {particle_index}."
                )
            gp = truth.particles[particle_index]
            return PrimaryInfo(truth_index, particle_index, gp.process)
    raise IndexError(f"No truth record with flat index {truth_index}.")


@dataclass(slots=True)
class GeneratorKeepMap:
    r"""
    Per-truth-record generator label and trajectory-storage permission.

    Built once per event by :meth:`build`; read-only afterwards.
    """
    entries: Dict[int, Tuple[str, bool]] = field(default_factory=dict)

    @classmethod
    def build(cls, handles: Sequence[MCTruthHandle], config: ParticleListConfig) -> "GeneratorKeepMap":
        r"""
        Decide, for every truth record, whether its particles may store trajectories.

        A record is storable iff ``config.store_trajectories`` and
        (``keep_gen_trajectories`` is empty or contains the record's label).
        """
        custom = bool(config.keep_gen_trajectories)
        if not config.store_trajectories:
            logger.debug("Trajectory points will not be stored.")
        elif not custom:
            logger.debug("keep_gen_trajectories is empty; storing trajectory points for all generators.")

        entries: Dict[int, Tuple[str, bool]] = {}
        n_keep = 0
        for n, handle, _truth in iter_truths(handles):
            keep = config.store_trajectories and (not custom or handle.label in config.keep_gen_trajectories)
            n_keep += int(keep)
            entries[n] = (handle.label, keep)
            logger.debug(
                "MCTruth summary: index=%d generator=%s trajectory points storable=%s",
                n, handle.label, keep,
            )

        if n_keep == 0 and custom and config.store_trajectories:
            logger.warning(
                "store_trajectories is set and keep_gen_trajectories=%s, but none of these "
                "generators are present in the event. This may be expected for generators "
                "that can produce no particles (e.g. radiologicals).",
                list(config.keep_gen_trajectories),
            )
        return cls(entries)

    def label(self, truth_index: int) -> str:
        return self.entries.get(truth_index, ("unknown", False))[0]

    def storable(self, truth_index: int) -> bool:
        """Trajectory permission for ``truth_index`` (``False`` if unknown)."""
        return self.entries.get(truth_index, ("unknown", False))[1]

    @property
    def n_storable(self) -> int:
        return sum(1 for _, keep in self.entries.values() if keep)

    def __len__(self) -> int:
        return len(self.entries)
