from __future__ import annotations

from typing import Dict, Iterable, List

import networkx as nx
import numpy as np

from simtruth.finalization import EventProducts
from simtruth.particle import MCParticle


def genealogy_graph(particles: Iterable[MCParticle]) -> nx.DiGraph:
    r"""
    Directed mother -> daughter graph of output particles.

    Nodes are track IDs with attributes ``pdg``, ``process``,
    ``end_process`` and ``n_points``. An edge :math:`m \rightarrow d` is added
    for every daughter link :math:`d \in \mathrm{daughters}(m)`. Mothers
    absent from ``particles`` (orphan links) add no node.
    """
    g = nx.DiGraph()
    plist = list(particles)
    for p in plist:
        g.add_node(
            p.track_id,
            pdg=p.pdg,
            process=p.process,
            end_process=p.end_process,
            n_points=p.n_trajectory_points,
        )
    for p in plist:
        for d in p.daughters:
            if d in g:
                g.add_edge(p.track_id, d)
    return g


def dangling_references(particles: Iterable[MCParticle]) -> List[int]:
    r"""
    Daughter IDs that do not resolve to an output particle.

    The finalization pass only links daughters that are in the particle list,
    so a consistent event yields an empty list.
    """
    plist = list(particles)
    ids = {p.track_id for p in plist}
    return sorted({d for p in plist for d in p.daughters if d not in ids})


def event_statistics(products: EventProducts) -> Dict[str, float]:
    r"""
    Summary of one event's output collections.

    Returns
    -------
    dict
        ``particles``, ``primaries``, ``associations``, ``dropped_tracks``,
        ``dropped_particles``, ``trajectory_points``, ``mean_points``,
        ``max_depth`` (longest mother -> daughter chain in edges) and
        ``roots`` (weakly connected components of the genealogy).
    """
    g = genealogy_graph(products.particles)
    n_points = np.array([p.n_trajectory_points for p in products.particles], dtype=np.int64)
    return {
        "particles": len(products.particles),
        "primaries": sum(1 for p in products.particles if p.mother == 0),
        "associations": len(products.associations),
        "dropped_tracks": sum(len(v) for v in products.ancestry.values()),
        "dropped_particles": len(products.dropped_particles or []),
        "trajectory_points": int(n_points.sum()) if n_points.size else 0,
        "mean_points": float(n_points.mean()) if n_points.size else 0.0,
        "max_depth": int(nx.dag_longest_path_length(g)) if g.number_of_nodes() else 0,
        "roots": nx.number_weakly_connected_components(g) if g.number_of_nodes() else 0,
    }
