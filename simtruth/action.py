from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

import numpy as np

import simtruth.policy as trk_policy
from simtruth.config import ParticleListConfig
from simtruth.errors import LogicError
from simtruth.events import Step, StepPoint, TrackEnd, TrackInfo
from simtruth.finalization import EventProducts, finalize_event, update_daughter_information
from simtruth.genealogy import GenealogyStore
from simtruth.particle import NO_GENERATED_PARTICLE_INDEX, NO_PARTICLE_ID, MCParticle
from simtruth.particle_list import ParticleList
from simtruth.truth import GeneratorKeepMap, MCTruthHandle

logger = logging.getLogger(__name__)

# velocity mismatch (cm/ns) above which optical-photon step times are corrected
VELOCITY_TOLERANCE = 1e-4


class AdmissionOutcome(Enum):
    """Result of :meth:`ParticleListAction.pre_tracking_action`."""
    RETAINED = "retained"
    DROPPED_PROCESS = "dropped_process"
    DROPPED_ENERGY_CUT = "dropped_energy_cut"
    FINALIZED_AT_CREATION = "finalized_at_creation"


@dataclass(slots=True)
class CurrentParticle:
    r"""
    Handle on the particle being transported.

    Holds the track ID (an index into the arena, never the record itself) and
    the per-track decisions fixed at creation.
    """
    track_id: int
    truth_info_index: int = NO_GENERATED_PARTICLE_INDEX
    keep_full_trajectory: bool = False
    in_dropped_list: bool = False

    @property
    def is_primary(self) -> bool:
        return self.truth_info_index != NO_GENERATED_PARTICLE_INDEX


class ParticleListAction:
    r"""
    Build the genealogy and trajectories of the particles of one simulated event.

    The transport engine binding calls, for every event,

    1. :meth:`begin_of_event_action` with the event's truth-record handles,
    2. for each track, :meth:`pre_tracking_action`, then
       :meth:`stepping_action` for every step, then :meth:`post_tracking_action`,
    3. :meth:`end_of_event_action`, which returns the output collections.

    Calls must arrive in causal order: a parent track is created before any of
    its daughters, and a track's steps occur between its creation and its end.
    One instance serves one worker; instances must not be shared.

    Parameters
    ----------
    config : ParticleListConfig, optional
        Static configuration; the default keeps everything.

    Attributes
    ----------
    config : ParticleListConfig
        Resolved configuration (default not-stored list applied).
    store : GenealogyStore
        Per-event genealogy.
    dropped_list : ParticleList or None
        Particles kept despite being dropped; ``None`` unless
        ``store_dropped_mc_particles``.
    generator_map : GeneratorKeepMap
        Per-truth-record trajectory permission for the current event.
    track_id_offset : int
        Added to engine track IDs; persists across events.
    not_stored_counts : collections.Counter
        Tracks rejected per not-stored process pattern in the current event.
    """

    def __init__(self, config: Optional[ParticleListConfig] = None) -> None:
        self.config = (config or ParticleListConfig()).resolved()
        self.store = GenealogyStore()
        self.dropped_list: Optional[ParticleList] = (
            ParticleList() if self.config.store_dropped_mc_particles else None
        )
        self.generator_map = GeneratorKeepMap()
        self.truth_handles: List[MCTruthHandle] = []
        self.track_id_offset: int = 0
        self.current_track_id: int = NO_PARTICLE_ID
        self.not_stored_counts: Counter = Counter()
        self._current: Optional[CurrentParticle] = None

        cfg = self.config
        if not cfg.keep_em_shower_daughters:
            logger.info(
                "The full tracking information will not be stored for particles resulting "
                "from the following processes: %s",
                ", ".join(f'"{p}"' for p in cfg.not_stored_physics),
            )
        else:
            logger.info("Storing full tracking information for all processes.")
        if cfg.sparsify_trajectories:
            logger.info("Trajectory sparsification enabled with margin %g", cfg.sparsify_margin)

    # ------------------------------------------------------------------
    # Event session
    def begin_of_event_action(self, truth_handles: Sequence[MCTruthHandle]) -> None:
        r"""
        Reset per-event state and build the generator keep-map.

        The persistent :attr:`track_id_offset` is left untouched.
        """
        self._current = None
        self.current_track_id = NO_PARTICLE_ID
        self.store.clear()
        self.not_stored_counts.clear()
        if self.dropped_list is not None:
            self.dropped_list.clear()
        self.truth_handles = list(truth_handles)
        self.generator_map = GeneratorKeepMap.build(self.truth_handles, self.config)

    @property
    def current_particle(self) -> Optional[MCParticle]:
        """The record of the particle being transported, if any."""
        cur = self._current
        if cur is None:
            return None
        holder = self.dropped_list if cur.in_dropped_list else self.store.particles
        return holder.get(cur.track_id) if holder is not None else None

    @property
    def current_keeps_full_trajectory(self) -> bool:
        return self._current is not None and self._current.keep_full_trajectory

    def target_id(self, track_id: int) -> int:
        r"""
        ID to credit energy deposits of an (offset) track ID to.

        Retained tracks map to themselves, dropped tracks to ``-ancestor`` or
        :data:`~simtruth.particle.NO_PARTICLE_ID`.
        """
        return self.store.target_ids.get(track_id, NO_PARTICLE_ID)

    # ------------------------------------------------------------------
    # Track admission & genealogy resolution
    def pre_tracking_action(self, track: TrackInfo) -> AdmissionOutcome:
        r"""
        Decide whether and how to retain a newly created track.

        Primaries are parented to 0 and keep their truth provenance. Other
        tracks go through the process-exclusion filter, the energy cut and
        parent resolution (walking past discarded ancestors), then inherit the
        truth index and primary-process flag of the resolved parent.

        Raises
        ------
        LogicError
            If the resolved parent of a non-primary track has no truth index.
        """
        cfg = self.config
        store = self.store
        self._current = None

        track_id = int(track.track_id) + self.track_id_offset
        parent_id = int(track.parent_id) + self.track_id_offset
        self.current_track_id = track_id
        store.target_ids[track_id] = track_id

        not_store = False
        truth_info_index = NO_GENERATED_PARTICLE_INDEX

        if track.primary is not None:
            truth_info_index = int(track.primary.particle_index)
            truth_index = int(track.primary.truth_index)
            process_name, from_primary_process = trk_policy.normalize_primary_process(track.primary.process)
            if not from_primary_process:
                logger.debug(
                    "Truth process name %r starts with \"primary\" but is not \"primary\"; "
                    "its descendants are not flagged as primary lineage.",
                    process_name,
                )
            elif track.primary.process != trk_policy.PRIMARY_PROCESS:
                logger.warning(
                    "Truth primary process %r does not begin with \"primary\"; overriding it to \"primary\".",
                    track.primary.process,
                )
            parent_id = 0
        else:
            process_name = track.creator_process or "unknown"

            pattern = trk_policy.excluded_by_process(cfg, process_name)
            if pattern is not None:
                not_store = True
                self.not_stored_counts[pattern] += 1
                logger.debug("Track %d created by not-stored process %s", track_id, process_name)
                store.record_dropped(track_id, parent_id)
                self.current_track_id = store.target_ids[track_id]

            if trk_policy.below_energy_cut(cfg, track.kinetic_energy, track.pdg):
                store.record_dropped(track_id, parent_id)
                self.current_track_id = store.target_ids[track_id]
                return AdmissionOutcome.DROPPED_ENERGY_CUT

            parent_id = self._resolve_parent(track_id, parent_id)

            truth_index = store.truth_index.get(parent_id)
            if truth_index is None:
                raise LogicError(f"Could not locate truth index for parent track ID {parent_id}.")
            from_primary_process = store.primary_keep.get(parent_id, False)

        particle = MCParticle(
            track_id=track_id,
            pdg=int(track.pdg),
            process=process_name,
            mother=parent_id,
            mass=float(track.mass),
        )
        store.truth_index[track_id] = truth_index
        store.primary_keep[track_id] = from_primary_process
        particle.polarization = np.asarray(track.polarization, dtype=np.float64).copy()

        keep_full = trk_policy.keep_full_trajectory(
            cfg, self.generator_map.storable(truth_index), from_primary_process
        )

        if track.proper_time != 0:
            # already finished: no trajectory phase, never stored
            logger.debug("Track %d has non-zero proper time at creation; not tracked.", track_id)
            return AdmissionOutcome.FINALIZED_AT_CREATION

        if not_store:
            if self.dropped_list is None:
                return AdmissionOutcome.DROPPED_PROCESS
            self.dropped_list.add(particle)
            self._current = CurrentParticle(track_id, truth_info_index, keep_full, in_dropped_list=True)
            return AdmissionOutcome.DROPPED_PROCESS

        store.particles.add(particle)
        self._current = CurrentParticle(track_id, truth_info_index, keep_full)
        return AdmissionOutcome.RETAINED

    def _resolve_parent(self, track_id: int, parent_id: int) -> int:
        r"""
        Replace an unknown parent by its nearest retained ancestor.

        Best effort: if no retained ancestor exists the original parent ID is
        kept and a warning is logged.
        """
        store = self.store
        dropped = self.dropped_list
        if store.known_particle(parent_id) or (dropped is not None and dropped.known_particle(parent_id)):
            return parent_id

        # keep the link in case this track has daughters of its own
        store.parent_ids[track_id] = parent_id
        pid = store.get_parentage(parent_id, also_known=dropped)
        if pid != NO_PARTICLE_ID:
            return pid

        logger.warning(
            "Can't find parent id %d in the particle list or the parent map. "
            "Making %d the mother ID of track %d to aid debugging.",
            parent_id, parent_id, track_id,
        )
        return parent_id

    # ------------------------------------------------------------------
    # Trajectory accumulation
    def _add_point(self, particle: MCParticle, point: StepPoint, process: str) -> None:
        particle.add_trajectory_point(
            point.four_position(), point.four_momentum(), process, self.config.keep_transportation
        )

    def stepping_action(self, step: Step) -> None:
        r"""
        Add trajectory samples for one step of the active particle.

        The pre-step point of the first step is always stored as ``"Start"``;
        the post-step point is stored only for particles keeping a full
        trajectory and steps not defined by a step limiter.
        """
        cur = self._current
        if cur is None or step.post.process is None:
            return
        particle = self.current_particle
        if particle is None:
            return

        # optical photons: first-step delta time can be computed wrongly by the engine
        if step.pdg == 0 and step.delta_time > 0.0 and step.velocity > 0.0:
            velocity_step = step.step_length / step.delta_time
            if abs(step.velocity - velocity_step) > VELOCITY_TOLERANCE:
                step.post.time = step.post.time - step.delta_time + step.step_length / step.velocity

        if particle.n_trajectory_points == 0:
            self._add_point(particle, step.pre, "Start")

        if not step.is_step_limited and cur.keep_full_trajectory:
            self._add_point(particle, step.post, step.post.process)

    def post_tracking_action(self, end: TrackEnd) -> None:
        r"""
        Close the active particle.

        A degenerate final step (no defining process) erases the store record; with
        drop retention a trajectory-less copy is archived when no full trajectory
        is kept. Entries already in the dropped list stay there. Otherwise the
        end process is set and either one end sample is appended or the full
        trajectory is sparsified.
        """
        cur = self._current
        if cur is None:
            return
        particle = self.current_particle
        self._current = None
        if particle is None:
            return

        cfg = self.config
        particle.weight = float(end.weight)
        holder = self.dropped_list if cur.in_dropped_list else self.store.particles

        process = end.post.process
        if process is None:
            # only the store entry goes; a dropped-list entry stays in place
            self.store.particles.erase(cur.track_id)
            if self.dropped_list is not None and not cur.keep_full_trajectory:
                self.dropped_list.archive(particle)
            return

        particle.end_process = process
        if not cur.keep_full_trajectory:
            self._add_point(particle, end.post, process)
        elif cfg.sparsify_trajectories:
            removed = particle.sparsify_trajectory(cfg.sparsify_margin, cfg.keep_second_to_last)
            logger.debug("Track %d: sparsification removed %d points", cur.track_id, removed)

        if cur.is_primary:
            self.store.primary_truth[cur.track_id] = cur.truth_info_index
        holder.mark_done(cur.track_id)

    # ------------------------------------------------------------------
    # Finalization
    def yield_list(self) -> ParticleList:
        r"""
        Advance the persistent track-ID offset past this event's IDs.

        The offset becomes ``max_id + 1`` over retained and dropped records,
        but only if at least one particle was retained; it never decreases.
        """
        highest = self.store.particles.highest_id()
        if self.dropped_list is not None:
            dropped_highest = self.dropped_list.highest_id()
            if dropped_highest is not None:
                highest = dropped_highest if highest is None else max(highest, dropped_highest)
        if len(self.store.particles) and highest is not None:
            self.track_id_offset = max(self.track_id_offset, highest + 1)
            logger.debug("highest ID = %d, track ID offset = %d", highest, self.track_id_offset)
        return self.store.particles

    def yield_dropped_list(self) -> ParticleList:
        r"""
        Return the dropped-particle list.

        Raises
        ------
        RuntimeError
            If drop retention was not configured.
        """
        if self.dropped_list is None:
            raise RuntimeError("Dropped particle list not built: store_dropped_mc_particles is off.")
        return self.dropped_list

    def end_of_event_action(self) -> EventProducts:
        r"""
        Finalize the event and hand over the output collections.

        Backfills daughters, advances the track-ID offset, and moves every
        retained particle into the output together with its truth association.

        Raises
        ------
        LogicError
            If a retained particle has no trajectory, or a primary particle has
            no generated-particle index.
        """
        if self.not_stored_counts:
            logger.info(
                "Not stored process summary: %s",
                ", ".join(f"{p}: {n}" for p, n in self.not_stored_counts.items()),
            )

        self._current = None
        update_daughter_information(self.store.particles)
        self.yield_list()
        dropped = self.yield_dropped_list() if self.dropped_list is not None else None

        products = finalize_event(
            self.store,
            self.truth_handles,
            dropped,
            not_stored_counts=dict(self.not_stored_counts),
        )
        self.current_track_id = NO_PARTICLE_ID
        return products

    def reset_track_id_offset(self) -> None:
        """Start a new unit of work: track IDs restart from the engine's own."""
        self.track_id_offset = 0

    def get_statistics(self) -> Dict[str, int]:
        """Counts describing the in-progress event."""
        return {
            "retained": len(self.store.particles),
            "dropped_tracks": sum(len(v) for v in self.store.dropped_tracks.values()),
            "dropped_list": len(self.dropped_list) if self.dropped_list is not None else 0,
            "substituted_parents": len(self.store.parent_ids),
            "truth_records": len(self.generator_map),
            "storable_truth_records": self.generator_map.n_storable,
            "track_id_offset": self.track_id_offset,
        }
