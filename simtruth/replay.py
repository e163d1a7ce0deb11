r"""
Replay recorded transport-engine event streams through a :class:`ParticleListAction`.

Stream format
-------------
A stream is a JSON-lines file; every line is one record with a ``type`` key:

- ``begin_event``: ``{"truth_handles": [{"label": str, "truths": [{"origin": int,
  "particles": [{"pdg": int, "process": str, "status_code": int}]}]}]}``
- ``track_start``: ``track_id``, ``parent_id``, ``pdg``, ``process`` (creator),
  ``kinetic_energy``, ``mass``, optional ``polarization``, ``proper_time`` and
  ``primary`` (``{"truth_index": int, "particle_index": int}``; the process
  label is taken from the truth record unless given explicitly).
- ``step``: ``pre`` and ``post`` points, ``pdg``, ``step_length``,
  ``delta_time``, ``velocity``.
- ``track_end``: ``post`` point and ``weight``.
- ``end_event``: no payload.

Points are ``{"position": [x, y, z], "time": t, "momentum": [px, py, pz],
"energy": E, "process": str | null}`` in cm / ns / GeV.

Blank lines and lines starting with ``#`` are ignored.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

import orjson
import pandas as pd

from simtruth.action import ParticleListAction
from simtruth.events import PrimaryInfo, Step, StepPoint, TrackEnd, TrackInfo
from simtruth.finalization import EventProducts
from simtruth.truth import GeneratedParticle, MCTruth, MCTruthHandle, primary_info

logger = logging.getLogger(__name__)


def iter_records(path: Path) -> Iterator[Dict[str, Any]]:
    r"""
    Yield the records of a JSON-lines stream.

    Raises
    ------
    ValueError
        If a line is not a JSON object.
    """
    with Path(path).open("rb") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith(b"#"):
                continue
            try:
                rec = orjson.loads(line)
            except orjson.JSONDecodeError as e:
                raise ValueError(f"{path}:{lineno}: invalid JSON: {e}") from e
            if not isinstance(rec, dict) or "type" not in rec:
                raise ValueError(f"{path}:{lineno}: record must be an object with a 'type' key.")
            yield rec


def parse_truth_handles(raw: Iterable[Mapping[str, Any]]) -> List[MCTruthHandle]:
    handles: List[MCTruthHandle] = []
    for h in raw:
        truths = [
            MCTruth(
                origin=int(t.get("origin", 0)),
                particles=[
                    GeneratedParticle(
                        pdg=int(gp["pdg"]),
                        process=str(gp.get("process", "primary")),
                        status_code=int(gp.get("status_code", 1)),
                    )
                    for gp in t.get("particles", [])
                ],
            )
            for t in h.get("truths", [])
        ]
        handles.append(MCTruthHandle(label=str(h.get("label", "unknown")), truths=truths))
    return handles


def parse_point(raw: Mapping[str, Any]) -> StepPoint:
    return StepPoint(
        position=raw["position"],
        time=raw.get("time", 0.0),
        momentum=raw.get("momentum", (0.0, 0.0, 0.0)),
        energy=raw.get("energy", 0.0),
        process=raw.get("process"),
    )


def parse_track(raw: Mapping[str, Any], handles: List[MCTruthHandle]) -> TrackInfo:
    prim: Optional[PrimaryInfo] = None
    if raw.get("primary") is not None:
        p = raw["primary"]
        if "process" in p:
            prim = PrimaryInfo(int(p["truth_index"]), int(p["particle_index"]), str(p["process"]))
        else:
            prim = primary_info(handles, int(p["truth_index"]), int(p["particle_index"]))
    return TrackInfo(
        track_id=int(raw["track_id"]),
        parent_id=int(raw.get("parent_id", 0)),
        pdg=int(raw.get("pdg", 0)),
        creator_process=raw.get("process"),
        kinetic_energy=float(raw.get("kinetic_energy", 0.0)),
        mass=float(raw.get("mass", 0.0)),
        polarization=raw.get("polarization", (0.0, 0.0, 0.0)),
        proper_time=float(raw.get("proper_time", 0.0)),
        primary=prim,
    )


def parse_step(raw: Mapping[str, Any]) -> Step:
    return Step(
        pre=parse_point(raw["pre"]),
        post=parse_point(raw["post"]),
        pdg=int(raw.get("pdg", 0)),
        step_length=float(raw.get("step_length", 0.0)),
        delta_time=float(raw.get("delta_time", 0.0)),
        velocity=float(raw.get("velocity", 0.0)),
    )


def replay_records(
    records: Iterable[Mapping[str, Any]],
    action: ParticleListAction,
) -> Iterator[EventProducts]:
    r"""
    Drive ``action`` with a record stream, yielding one result per event.

    Raises
    ------
    ValueError
        On an unknown record type, or a track/step record outside an event.
    simtruth.errors.LogicError
        Propagated from the action when the stream violates causal order.
    """
    handles: Optional[List[MCTruthHandle]] = None
    n_events = 0
    for rec in records:
        kind = rec["type"]
        if kind == "begin_event":
            if handles is not None:
                raise ValueError("begin_event received inside an open event.")
            handles = parse_truth_handles(rec.get("truth_handles", []))
            action.begin_of_event_action(handles)
            continue
        if handles is None:
            raise ValueError(f"{kind!r} record outside of an event.")
        if kind == "track_start":
            action.pre_tracking_action(parse_track(rec, handles))
        elif kind == "step":
            action.stepping_action(parse_step(rec))
        elif kind == "track_end":
            action.post_tracking_action(TrackEnd(parse_point(rec["post"]), float(rec.get("weight", 1.0))))
        elif kind == "end_event":
            n_events += 1
            logger.debug("Event %d complete", n_events)
            yield action.end_of_event_action()
            handles = None
        else:
            raise ValueError(f"Unknown record type {kind!r}.")
    if handles is not None:
        logger.warning("Stream ended inside an open event; it was not finalized.")


def replay_file(path: Path, action: Optional[ParticleListAction] = None) -> List[EventProducts]:
    """Replay a whole JSON-lines stream file; see :func:`replay_records`."""
    action = action or ParticleListAction()
    return list(replay_records(iter_records(path), action))


def products_to_frames(events: Iterable[EventProducts]) -> Dict[str, pd.DataFrame]:
    r"""
    Flatten output collections into tables.

    Returns
    -------
    dict[str, pandas.DataFrame]
        ``particles`` (one row per particle), ``trajectories`` (one row per
        sample), ``associations``, ``ancestry`` (one row per dropped track) and
        ``dropped``. Every table carries an ``event`` column (0-based).
    """
    particles: List[dict] = []
    points: List[dict] = []
    assns: List[dict] = []
    ancestry: List[dict] = []
    dropped: List[dict] = []

    for ev, products in enumerate(events):
        for p in products.particles:
            particles.append({
                "event": ev,
                "track_id": p.track_id,
                "pdg": p.pdg,
                "mother": p.mother,
                "process": p.process,
                "end_process": p.end_process,
                "mass": p.mass,
                "weight": p.weight,
                "n_daughters": len(p.daughters),
                "n_points": p.n_trajectory_points,
            })
            pos, mom, procs = p.trajectory.positions, p.trajectory.momenta, p.trajectory.processes
            for i in range(len(pos)):
                points.append({
                    "event": ev,
                    "track_id": p.track_id,
                    "index": i,
                    "x": pos[i, 0], "y": pos[i, 1], "z": pos[i, 2], "t": pos[i, 3],
                    "px": mom[i, 0], "py": mom[i, 1], "pz": mom[i, 2], "e": mom[i, 3],
                    "process": procs.get(i, ""),
                })
        for a in products.associations:
            assns.append({
                "event": ev,
                "truth_index": a.truth_index,
                "track_id": a.particle.track_id,
                "generated_particle_index": a.generated_particle_index if a.has_generated_particle_index else -1,
            })
        for ancestor, ids in products.ancestry.items():
            for tid in ids:
                ancestry.append({"event": ev, "ancestor": ancestor, "track_id": tid})
        for d in products.dropped_particles or []:
            dropped.append({
                "event": ev,
                "track_id": d.track_id,
                "pdg": d.pdg,
                "mother": d.mother,
                "process": d.process,
                "end_process": d.end_process,
                "origin": d.origin,
            })

    columns = {
        "particles": ["event", "track_id", "pdg", "mother", "process", "end_process",
                      "mass", "weight", "n_daughters", "n_points"],
        "trajectories": ["event", "track_id", "index", "x", "y", "z", "t", "px", "py", "pz", "e", "process"],
        "associations": ["event", "truth_index", "track_id", "generated_particle_index"],
        "ancestry": ["event", "ancestor", "track_id"],
        "dropped": ["event", "track_id", "pdg", "mother", "process", "end_process", "origin"],
    }
    rows = {
        "particles": particles,
        "trajectories": points,
        "associations": assns,
        "ancestry": ancestry,
        "dropped": dropped,
    }
    return {name: pd.DataFrame(rows[name], columns=cols) for name, cols in columns.items()}


def write_frames(frames: Mapping[str, pd.DataFrame], out_dir: Path) -> List[Path]:
    """Write each table to ``<out_dir>/<name>.csv``; returns the written paths."""
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    written: List[Path] = []
    for name, df in frames.items():
        path = out_dir / f"{name}.csv"
        df.to_csv(path, index=False)
        written.append(path)
    return written
