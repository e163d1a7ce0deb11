from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, List, Optional, Set, Tuple

import numpy as np

from simtruth.kernels import range_within_margin

#: "No particle" track ID used for dropped tracks without a retained ancestor.
NO_PARTICLE_ID: int = -(2**31)
#: Generated-particle index of a particle not seeded by a truth record.
NO_GENERATED_PARTICLE_INDEX: int = 2**64 - 1

TRANSPORTATION = "Transportation"


class Trajectory:
    r"""
    Ordered trajectory samples of one particle.

    Each sample is a four-position :math:`(x,y,z,t)` (cm, ns) and a
    four-momentum :math:`(p_x,p_y,p_z,E)` (GeV). A sparse map
    ``index -> process`` remembers the process that produced a sample; those
    samples are treated as *interesting* and survive :meth:`sparsify`.
    """

    __slots__ = ("_pos", "_mom", "_process")

    def __init__(self) -> None:
        self._pos: List[np.ndarray] = []
        self._mom: List[np.ndarray] = []
        self._process: Dict[int, str] = {}

    def __len__(self) -> int:
        return len(self._pos)

    def __bool__(self) -> bool:
        return bool(self._pos)

    def add(
        self,
        position: np.ndarray,
        momentum: np.ndarray,
        process: str,
        keep_transportation: bool = False,
    ) -> None:
        r"""
        Append one sample.

        The process name is recorded for the new index unless it is
        ``"Transportation"`` and ``keep_transportation`` is ``False``.
        """
        self._pos.append(np.asarray(position, dtype=np.float64).reshape(4).copy())
        self._mom.append(np.asarray(momentum, dtype=np.float64).reshape(4).copy())
        if keep_transportation or process != TRANSPORTATION:
            self._process[len(self._pos) - 1] = process

    @property
    def positions(self) -> np.ndarray:
        """``(N, 4)`` array of four-positions."""
        if not self._pos:
            return np.empty((0, 4), dtype=np.float64)
        return np.vstack(self._pos)

    @property
    def momenta(self) -> np.ndarray:
        """``(N, 4)`` array of four-momenta."""
        if not self._mom:
            return np.empty((0, 4), dtype=np.float64)
        return np.vstack(self._mom)

    @property
    def processes(self) -> Dict[int, str]:
        """Copy of the ``index -> process`` map."""
        return dict(self._process)

    def process_at(self, index: int) -> Optional[str]:
        return self._process.get(index)

    def position(self, index: int) -> np.ndarray:
        return self._pos[index].copy()

    def momentum(self, index: int) -> np.ndarray:
        return self._mom[index].copy()

    def sparsify(self, margin: float, keep_second_to_last: bool = False) -> int:
        r"""
        Reduce the samples to a subset representing the path within ``margin``.

        Divide-and-conquer over index ranges. A range :math:`[lo,hi]` is
        accepted when all interior spatial points lie within ``margin`` of the
        chord :math:`P_{lo}\rightarrow P_{hi}` (see
        :func:`simtruth.kernels.impact_sq`); only :math:`lo` is then kept
        (the end is covered by the next range). Otherwise the range is split
        at :math:`mid=\lfloor (lo+hi)/2 \rfloor`; halves with no interior
        point keep their start directly.

        Samples with a recorded process, the last sample and (optionally) the
        second-to-last sample are always kept.

        Parameters
        ----------
        margin : float
            Tolerance in cm.
        keep_second_to_last : bool, optional
            Also keep index ``N-2``.

        Returns
        -------
        int
            Number of samples removed.
        """
        n = len(self._pos)
        if n <= 2:
            return 0

        xyz = np.ascontiguousarray(self.positions[:, :3])
        margin_sq = float(margin) * float(margin)

        to_check: Deque[Tuple[int, int]] = deque([(0, n - 1)])
        done: Set[int] = set()
        while to_check:
            lo, hi = to_check.popleft()
            if range_within_margin(xyz, lo, hi, margin_sq):
                done.add(lo)
                continue
            mid = (lo + hi) // 2
            if mid == lo + 1:
                done.add(lo)
            else:
                to_check.append((lo, mid))
            if mid == hi - 1:
                done.add(mid)
            else:
                to_check.append((mid, hi))

        done.update(self._process.keys())
        if keep_second_to_last:
            done.add(n - 2)
        done.add(n - 1)

        keep = sorted(done)
        remap = {old: new for new, old in enumerate(keep)}
        self._pos = [self._pos[i] for i in keep]
        self._mom = [self._mom[i] for i in keep]
        self._process = {remap[i]: p for i, p in self._process.items()}
        return n - len(keep)

    def clear(self) -> None:
        self._pos.clear()
        self._mom.clear()
        self._process.clear()


@dataclass(slots=True)
class MCParticle:
    r"""
    Particle record built from one simulated track.

    Attributes
    ----------
    track_id : int
        Track ID after offsetting.
    pdg : int
        PDG code.
    process : str
        Creation process (``"primary"`` for primaries).
    mother : int
        Parent track ID, ``0`` for primaries.
    mass : float
        Mass in GeV.
    status_code : int
        ``1`` for tracked particles.
    weight : float
        Track weight set at track end.
    polarization : (3,) ndarray
    daughters : list of int
        Daughter track IDs, filled in by the finalization pass.
    trajectory : Trajectory
    end_process : str
        Process that ended the track (empty until the track ends).
    """
    track_id: int
    pdg: int
    process: str
    mother: int
    mass: float
    status_code: int = 1
    weight: float = 0.0
    polarization: np.ndarray = field(default_factory=lambda: np.zeros(3))
    daughters: List[int] = field(default_factory=list)
    trajectory: Trajectory = field(default_factory=Trajectory)
    end_process: str = ""

    @property
    def n_trajectory_points(self) -> int:
        return len(self.trajectory)

    def add_daughter(self, track_id: int) -> None:
        self.daughters.append(int(track_id))

    def add_trajectory_point(
        self,
        position: np.ndarray,
        momentum: np.ndarray,
        process: str,
        keep_transportation: bool = False,
    ) -> None:
        self.trajectory.add(position, momentum, process, keep_transportation)

    def sparsify_trajectory(self, margin: float = 0.015, keep_second_to_last: bool = False) -> int:
        return self.trajectory.sparsify(margin, keep_second_to_last)

    def reduced(self) -> "MCParticle":
        """Copy of this record without trajectory samples (used when archiving)."""
        out = copy.copy(self)
        out.daughters = list(self.daughters)
        out.trajectory = Trajectory()
        return out


@dataclass(slots=True)
class ParticleLite:
    r"""
    Reduced-fidelity record of a dropped particle.

    Start and end four-vectors are ``None`` when the source particle had no
    trajectory samples.
    """
    track_id: int
    status_code: int
    pdg: int
    mother: int
    process: str
    end_process: str
    mass: float
    start_position: Optional[np.ndarray] = None
    end_position: Optional[np.ndarray] = None
    start_momentum: Optional[np.ndarray] = None
    end_momentum: Optional[np.ndarray] = None
    origin: int = 0

    @classmethod
    def from_particle(cls, p: MCParticle, origin: int = 0) -> "ParticleLite":
        traj = p.trajectory
        has = len(traj) > 0
        return cls(
            track_id=p.track_id,
            status_code=p.status_code,
            pdg=p.pdg,
            mother=p.mother,
            process=p.process,
            end_process=p.end_process,
            mass=p.mass,
            start_position=traj.position(0) if has else None,
            end_position=traj.position(-1) if has else None,
            start_momentum=traj.momentum(0) if has else None,
            end_momentum=traj.momentum(-1) if has else None,
            origin=int(origin),
        )
