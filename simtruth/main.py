#!/usr/bin/env python3
r"""
Particle provenance runner (headless-safe).

This script replays a recorded transport-engine event stream (JSON lines, see
:mod:`simtruth.replay`) through a :class:`~simtruth.action.ParticleListAction`,
logs per-event genealogy statistics, writes the output collections as CSV
tables and optionally draws trajectories and the genealogy graph.

CLI overview
------------
See :func:`build_parser` for all options. Typical usage:

.. code-block:: bash

   simtruth -f events.jsonl --config config.json -o out/
   simtruth -f events.jsonl --plot -v
   simtruth --config config.json --dump-config
"""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

import simtruth.lineage as trk_lineage
import simtruth.replay as trk_replay
from simtruth.action import ParticleListAction
from simtruth.config import ParticleListConfig, dump_config, load_config


def build_parser() -> argparse.ArgumentParser:
    r"""
    Construct the command-line interface for the provenance runner.

    Returns
    -------
    argparse.ArgumentParser
        Parser with options for the input stream, configuration, output
        directory, plotting and verbosity.
    """
    p = argparse.ArgumentParser(description="Replay simulated events and build particle genealogy.")
    p.add_argument("-f", "--file", type=str, default=None,
                   help="Input JSON-lines event stream.")
    p.add_argument("--config", type=str, default=None,
                   help="Path to JSON config with a 'particle_list' block (default: built-in defaults).")
    p.add_argument("-o", "--out-dir", type=str, default=None,
                   help="If set, write particles/trajectories/associations/ancestry/dropped CSV tables here.")
    p.add_argument("--plot", action="store_true", default=False,
                   help="Show trajectory and genealogy plots for the last event (default: False).")
    p.add_argument("--no-plot", dest="plot", action="store_false",
                   help="Disable plotting.")
    p.add_argument("--max-tracks", type=int, default=None,
                   help="Cap on trajectories drawn with --plot (default: all).")
    p.add_argument("--dump-config", action="store_true", default=False,
                   help="Print the resolved configuration as JSON and exit.")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Enable verbose logging.")
    return p


def setup_logging(verbose: bool = False) -> None:
    r"""
    Configure process-wide logging.

    Parameters
    ----------
    verbose : bool, optional
        If ``True``, set level to ``DEBUG``; otherwise ``INFO``.

    Notes
    -----
    Format is ``'%(asctime)s | %(levelname)-8s | %(message)s'`` with ``%H:%M:%S`` timestamps.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_plotting_guard(enable_plots: bool) -> None:
    r"""
    Enforce a headless-safe Matplotlib configuration when plotting is disabled.

    Must be called before :mod:`simtruth.plotting` is imported.
    """
    if enable_plots:
        return
    os.environ.setdefault("MPLBACKEND", "Agg")
    import matplotlib
    matplotlib.use("Agg", force=True)
    import matplotlib.pyplot as _plt
    _plt.ioff()
    _plt.show = lambda *a, **k: None  # type: ignore[assignment]


def main(argv: Optional[List[str]] = None) -> None:
    r"""
    End-to-end run: **config -> replay -> statistics -> tables -> plots**.

    Pipeline
    --------
    1. Parse CLI (:func:`build_parser`) and set up logging (:func:`setup_logging`).
    2. Load the configuration (:func:`simtruth.config.load_config`), or use the
       defaults; with ``--dump-config`` print it and stop.
    3. Replay the event stream (:func:`simtruth.replay.replay_records`).
    4. Log per-event statistics (:func:`simtruth.lineage.event_statistics`).
    5. Optionally write CSV tables and draw the last event.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    if args.config is not None:
        cfg_path = Path(args.config)
        logging.info("Reading config from %s", cfg_path)
        config = load_config(cfg_path)
    else:
        config = ParticleListConfig()

    if args.dump_config:
        print(dump_config(config.resolved()))
        return

    if args.file is None:
        parser.error("--file is required unless --dump-config is given")
    stream = Path(args.file)
    if not stream.exists():
        raise FileNotFoundError(f"No event stream at --file={args.file}")

    apply_plotting_guard(args.plot)

    action = ParticleListAction(config)
    logging.info("Replaying events from %s", stream.name)
    events = []
    for idx, products in enumerate(trk_replay.replay_records(trk_replay.iter_records(stream), action), start=1):
        stats = trk_lineage.event_statistics(products)
        logging.info("=== Event %d ===", idx)
        for k, v in stats.items():
            logging.info("  %s: %s", k, v)
        dangling = trk_lineage.dangling_references(products.particles)
        if dangling:
            logging.warning("Event %d: %d dangling daughter references: %s", idx, len(dangling), dangling[:10])
        events.append(products)

    if not events:
        logging.warning("No complete events in %s.", stream.name)
        return
    logging.info("Processed %d events; next track ID offset = %d", len(events), action.track_id_offset)

    if args.out_dir is not None:
        frames = trk_replay.products_to_frames(events)
        for path in trk_replay.write_frames(frames, Path(args.out_dir)):
            logging.info("Wrote %s", path)

    if args.plot:
        import simtruth.plotting as trk_plot  # lazy: backend is decided above

        last = events[-1]
        trk_plot.plot_trajectories_3d(last.particles, max_tracks=args.max_tracks)
        trk_plot.plot_genealogy(last.particles)


if __name__ == "__main__":
    main()
