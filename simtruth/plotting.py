import logging
from pathlib import Path
from typing import Iterable, Optional

import matplotlib.pyplot as plt
import networkx as nx
import numpy as np

from simtruth.lineage import genealogy_graph
from simtruth.particle import MCParticle


def _show_and_close(fig, *, do_show: bool = True, save_path: Optional[Path] = None) -> None:
    r"""
    Optionally save and show a Matplotlib figure, then always close it.

    Parameters
    ----------
    fig : matplotlib.figure.Figure
        Figure object to display and close.
    do_show : bool, optional
        If ``True`` (default) call ``plt.show()`` before closing.
    save_path : pathlib.Path or None, optional
        If given, the figure is written there before being shown.
    """
    try:
        fig.tight_layout()
    except Exception:
        pass
    if save_path is not None:
        fig.savefig(save_path, dpi=120)
        logging.info("Saved figure %s", save_path)
    if do_show:
        try:
            plt.show()
        except Exception:
            pass
    plt.close(fig)


def plot_trajectories_3d(
    particles: Iterable[MCParticle],
    *,
    max_tracks: Optional[int] = None,
    show: bool = True,
    save_path: Optional[Path] = None,
) -> int:
    r"""
    Plot stored particle trajectories as 3D polylines.

    Samples tagged with a process (other than ``"Start"``) are marked, which
    makes the points kept by sparsification visible.

    Parameters
    ----------
    particles : iterable of MCParticle
        Output particles; those with fewer than two samples are skipped.
    max_tracks : int or None, optional
        If provided, plot at most this many trajectories.
    show, save_path
        Forwarded to :func:`_show_and_close`.

    Returns
    -------
    int
        Number of trajectories drawn.

    Notes
    -----
    Axes are in **cm** (the trajectory position unit).
    """
    fig = plt.figure(figsize=(10, 8))
    ax = fig.add_subplot(111, projection="3d")
    count = 0
    for p in particles:
        if max_tracks is not None and count >= max_tracks:
            break
        if p.n_trajectory_points < 2:
            continue
        pos = p.trajectory.positions
        ax.plot(pos[:, 0], pos[:, 1], pos[:, 2], alpha=0.75, linewidth=1.0)
        tagged = np.fromiter(
            (i for i, proc in p.trajectory.processes.items() if proc != "Start"), dtype=np.int64
        )
        if tagged.size:
            ax.scatter(pos[tagged, 0], pos[tagged, 1], pos[tagged, 2], s=6, alpha=0.9)
        count += 1

    ax.set_xlabel("x (cm)")
    ax.set_ylabel("y (cm)")
    ax.set_zlabel("z (cm)")
    ax.set_title(f"Stored trajectories ({count})")
    _show_and_close(fig, do_show=show, save_path=save_path)
    return count


def plot_genealogy(
    particles: Iterable[MCParticle],
    *,
    show: bool = True,
    save_path: Optional[Path] = None,
) -> None:
    r"""
    Draw the mother -> daughter genealogy of output particles.

    Nodes are labelled with their track ID and colored by PDG code; roots
    (primaries) are drawn larger.
    """
    g = genealogy_graph(particles)
    if g.number_of_nodes() == 0:
        logging.info("No particles to draw.")
        return

    try:
        layers = {n: 0 for n in g.nodes}
        for n in nx.topological_sort(g):
            for d in g.successors(n):
                layers[d] = max(layers[d], layers[n] + 1)
        nx.set_node_attributes(g, layers, "depth")
        pos = nx.multipartite_layout(g, subset_key="depth")
    except nx.NetworkXUnfeasible:
        pos = nx.spring_layout(g, seed=0)

    pdgs = np.array([g.nodes[n]["pdg"] for n in g.nodes], dtype=np.int64)
    _, color_idx = np.unique(pdgs, return_inverse=True)
    sizes = [220 if g.in_degree(n) == 0 else 90 for n in g.nodes]

    fig, ax = plt.subplots(figsize=(12, 8))
    nx.draw_networkx(
        g,
        pos=pos,
        ax=ax,
        node_color=color_idx,
        cmap=plt.cm.tab10,
        node_size=sizes,
        font_size=7,
        arrows=True,
        arrowsize=8,
    )
    ax.set_title("Particle genealogy (mother -> daughter)")
    ax.set_axis_off()
    _show_and_close(fig, do_show=show, save_path=save_path)
