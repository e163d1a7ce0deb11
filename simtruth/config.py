from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Tuple

import orjson

logger = logging.getLogger(__name__)

#: Processes whose daughters are not stored when EM shower daughters are dropped
#: and no custom list is configured.
DEFAULT_NOT_STORED_PHYSICS: Tuple[str, ...] = (
    "conv",
    "LowEnConversion",
    "Pair",
    "compt",
    "Compt",
    "Brem",
    "phot",
    "Photo",
    "Ion",
    "annihil",
)

# Original (job-configuration) parameter names -> dataclass field names
_LEGACY_KEYS: Dict[str, str] = {
    "EnergyCut": "energy_cut",
    "storeTrajectories": "store_trajectories",
    "keepGenTrajectories": "keep_gen_trajectories",
    "keepEMShowerDaughters": "keep_em_shower_daughters",
    "NotStoredPhysics": "not_stored_physics",
    "keepOnlyPrimaryFullTrajectories": "keep_only_primary_full_trajectories",
    "SparsifyTrajectories": "sparsify_trajectories",
    "SparsifyMargin": "sparsify_margin",
    "KeepTransportation": "keep_transportation",
    "KeepSecondToLast": "keep_second_to_last",
    "StoreDroppedMCParticles": "store_dropped_mc_particles",
}


@dataclass(frozen=True, slots=True)
class ParticleListConfig:
    r"""
    Static configuration of the particle list action.

    Read once at construction; the action never mutates it. Use
    :meth:`resolved` to apply the conditional default of
    ``not_stored_physics``.

    Attributes
    ----------
    energy_cut : float
        Kinetic-energy threshold in GeV. Non-primary tracks strictly below it
        (and with a non-zero PDG code) are dropped.
    store_trajectories : bool
        Global switch for storing intermediate trajectory points.
    keep_gen_trajectories : tuple of str
        Generator labels whose particles may store full trajectories. Empty
        means every generator.
    keep_em_shower_daughters : bool
        If ``False``, tracks created by a process in ``not_stored_physics``
        are not stored.
    not_stored_physics : tuple of str
        Process-name substrings to suppress. Empty means
        :data:`DEFAULT_NOT_STORED_PHYSICS` once resolved.
    keep_only_primary_full_trajectories : bool
        Restrict full trajectories to descendants of primaries whose truth
        process is exactly ``"primary"``.
    sparsify_trajectories : bool
        Sparsify full trajectories at track end.
    sparsify_margin : float
        Maximum perpendicular distance (cm) of a dropped point from the
        retained polyline.
    keep_transportation : bool
        Record ``"Transportation"`` as a trajectory process (and therefore
        protect those points from sparsification).
    keep_second_to_last : bool
        Always keep the second-to-last trajectory point when sparsifying.
    store_dropped_mc_particles : bool
        Keep a list of dropped particles and emit reduced records for them.
    """
    energy_cut: float = 0.0
    store_trajectories: bool = True
    keep_gen_trajectories: Tuple[str, ...] = ()
    keep_em_shower_daughters: bool = True
    not_stored_physics: Tuple[str, ...] = ()
    keep_only_primary_full_trajectories: bool = False
    sparsify_trajectories: bool = False
    sparsify_margin: float = 0.015
    keep_transportation: bool = False
    keep_second_to_last: bool = False
    store_dropped_mc_particles: bool = False

    def __post_init__(self) -> None:
        if self.energy_cut < 0.0:
            raise ValueError(f"energy_cut must be >= 0 (got {self.energy_cut}).")
        if self.sparsify_margin < 0.0:
            raise ValueError(f"sparsify_margin must be >= 0 (got {self.sparsify_margin}).")
        # normalize list-like inputs so the dataclass stays hashable
        object.__setattr__(self, "keep_gen_trajectories", tuple(self.keep_gen_trajectories))
        object.__setattr__(self, "not_stored_physics", tuple(self.not_stored_physics))

    @classmethod
    def from_mapping(cls, cfg: Mapping[str, Any]) -> "ParticleListConfig":
        r"""
        Build a configuration from a mapping of parameters.

        Both the snake_case field names and the original camel-case parameter
        names (``EnergyCut``, ``storeTrajectories``, ...) are accepted.

        Raises
        ------
        KeyError
            If a key matches neither naming scheme, or a parameter is given twice.
        ValueError
            If a numeric parameter is out of range.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in cfg.items():
            name = _LEGACY_KEYS.get(key, key)
            if name not in known:
                raise KeyError(f"Unknown particle list parameter: {key!r}")
            if name in kwargs:
                raise KeyError(f"Parameter {name!r} given more than once.")
            kwargs[name] = value
        for name in ("energy_cut", "sparsify_margin"):
            if name in kwargs:
                kwargs[name] = float(kwargs[name])
        return cls(**kwargs)

    def resolved(self) -> "ParticleListConfig":
        r"""
        Return a copy with the default not-stored process list applied.

        The default list is used only when EM shower daughters are dropped and
        no custom list was given. When shower daughters are kept a custom list
        is ignored (with a warning).
        """
        if self.keep_em_shower_daughters:
            if self.not_stored_physics:
                logger.warning(
                    "not_stored_physics provided, but will be ignored. "
                    "Set keep_em_shower_daughters to False to use it."
                )
            return self
        if not self.not_stored_physics:
            return replace(self, not_stored_physics=DEFAULT_NOT_STORED_PHYSICS)
        return self


def load_config(config_path: Path, *, block: str = "particle_list") -> ParticleListConfig:
    r"""
    Load a :class:`ParticleListConfig` from a JSON file.

    Parameters
    ----------
    config_path : pathlib.Path
        JSON file. Parameters are read from the ``block`` key when present,
        otherwise from the top level.
    block : str, optional
        Name of the configuration block (default ``"particle_list"``).

    Returns
    -------
    ParticleListConfig

    Raises
    ------
    ValueError
        If the file cannot be parsed or does not hold a JSON object.
    """
    try:
        raw = orjson.loads(Path(config_path).read_bytes())
    except (OSError, orjson.JSONDecodeError) as e:
        raise ValueError(f"Failed to parse {config_path}: {e}") from e
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path} must contain a JSON object.")
    params = raw.get(block, raw)
    if not isinstance(params, dict):
        raise ValueError(f"Block {block!r} in {config_path} must be a JSON object.")
    return ParticleListConfig.from_mapping(params)


def dump_config(cfg: ParticleListConfig) -> str:
    """Serialize a configuration as an indented JSON ``particle_list`` block."""
    body = {f.name: getattr(cfg, f.name) for f in fields(cfg)}
    body = {k: list(v) if isinstance(v, tuple) else v for k, v in body.items()}
    return json.dumps({"particle_list": body}, indent=2)
