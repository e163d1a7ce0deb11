from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np


def _vec3(v) -> np.ndarray:
    out = np.asarray(v, dtype=np.float64).reshape(-1)
    if out.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {out.shape}")
    return out


@dataclass(slots=True)
class StepPoint:
    r"""
    One end of a transport step, already converted to cm / ns / GeV.

    Attributes
    ----------
    position : (3,) ndarray
        Position :math:`(x, y, z)` in cm.
    time : float
        Global time in ns.
    momentum : (3,) ndarray
        Momentum :math:`(p_x, p_y, p_z)` in GeV.
    energy : float
        Total energy in GeV.
    process : str or None
        Name of the process that defined the step ending at this point.
        ``None`` when the engine reports no defining process.
    """
    position: np.ndarray
    time: float
    momentum: np.ndarray
    energy: float
    process: Optional[str] = None

    def __post_init__(self) -> None:
        self.position = _vec3(self.position)
        self.momentum = _vec3(self.momentum)
        self.time = float(self.time)
        self.energy = float(self.energy)

    def four_position(self) -> np.ndarray:
        """Return :math:`(x, y, z, t)`."""
        return np.array([*self.position, self.time], dtype=np.float64)

    def four_momentum(self) -> np.ndarray:
        """Return :math:`(p_x, p_y, p_z, E)`."""
        return np.array([*self.momentum, self.energy], dtype=np.float64)


@dataclass(frozen=True, slots=True)
class PrimaryInfo:
    """Provenance of a primary track: which truth record and generated particle seeded it."""
    truth_index: int
    particle_index: int
    process: str = "primary"


@dataclass(slots=True)
class TrackInfo:
    r"""
    Track-creation event.

    IDs are local to the current engine invocation; the action applies the
    persistent track-ID offset.

    Attributes
    ----------
    track_id, parent_id : int
        Engine track IDs (parent 0 for primaries).
    pdg : int
        PDG code (0 for optical photons and other bookkeeping particles).
    creator_process : str or None
        Name of the creating process; ignored for primaries.
    kinetic_energy : float
        Kinetic energy at creation in GeV.
    mass : float
        Dynamic mass in GeV.
    polarization : (3,) ndarray
        Polarization vector.
    proper_time : float
        Proper time at creation; non-zero means the track is already finished.
    primary : PrimaryInfo or None
        Set for tracks seeded directly from a truth record.
    """
    track_id: int
    parent_id: int
    pdg: int
    creator_process: Optional[str] = None
    kinetic_energy: float = 0.0
    mass: float = 0.0
    polarization: np.ndarray = field(default_factory=lambda: np.zeros(3))
    proper_time: float = 0.0
    primary: Optional[PrimaryInfo] = None

    def __post_init__(self) -> None:
        self.polarization = _vec3(self.polarization)


@dataclass(slots=True)
class Step:
    r"""
    Step-completed event for the track currently being transported.

    ``velocity`` is the engine's velocity of the track, ``step_length`` the
    step length in cm and ``delta_time`` the step duration in ns; they drive
    the optical-photon timing correction.
    """
    pre: StepPoint
    post: StepPoint
    pdg: int = 0
    step_length: float = 0.0
    delta_time: float = 0.0
    velocity: float = 0.0

    @property
    def is_step_limited(self) -> bool:
        """``True`` if the step was defined by a step-limiting process."""
        return self.post.process is not None and "StepLimiter" in self.post.process


@dataclass(slots=True)
class TrackEnd:
    """Track-ended event: final post-step point and the track weight."""
    post: StepPoint
    weight: float = 1.0
