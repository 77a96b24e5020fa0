"""
Copyright (c) 2026, Oscar Garcia-Montero
For private use only. All rights reserved.

====================
Per-node mixed-harmonics analysis for heavy-ion collision simulations
running on a Condor/grid cluster. Each node processes one file of flow
events and writes the all-event profiles of the analysis.

What this script does
---------------------
1. Reads the flow events, or builds them from particle momenta with the
   RP_CUTS/POI_CUTS windows of parameters.py (and optionally the weights).
2. Runs the mixed-harmonics analysis event by event: Q_{n,k} and S_{p,k}
   are built, reduced to the 3-p correlator, its non-isotropic terms and
   (optionally) the differential correlator, then reset.
3. Stores the all-event profiles + settings + node results in a
   self-documenting HDF5 file.

Why profiles and not only the final number?
-------------------------------------------
The correction for detector effects is non-linear in the non-isotropic
terms, so the final correlator of the merged sample is not the average of
the per-node corrected values. The profiles (sum_w, sum_wy, ...) merge
exactly; post_process.py adds them up and corrects once.

Usage
-----
    python extractor.py <node_id> <events_file> <output_dir> [weights_file]

Example:
    python extractor.py 42 flow_events.h5 results/ weights.h5
"""

import sys
import os

import parser as pa
import analyser as an
from parameters import Settings, FLAGS
from mixed_harmonics import MixedHarmonics


def run(events, settings, weights=None):
    """
    Run the analysis over a list of flow events.

    Returns
    -------
    mh : MixedHarmonics — all events processed, finish() not yet called
    """
    mh = MixedHarmonics(settings, weights).init()
    for iev, ev in enumerate(events):
        mh.make(ev)
        if (iev + 1) % 1000 == 0:
            print(f"  processed {iev + 1}/{len(events)} events")
    return mh


def main():
    """
    Main entry point for per-node execution.

    Command-line arguments (positional):
        1. node_id      : int — unique ID for this node/job
        2. events_file  : str — HDF5 file with /events/<i> or /particles/<i>
        3. output_dir   : str — directory to write HDF5 output
        4. weights_file : str, optional — enables the weights it contains

    Output file will be named:
        <output_dir>/mixed_harmonics_<id:04d>.h5
    """
    # ── parse command-line arguments ───────────────────────────────────────
    if len(sys.argv) < 4:
        print("Usage: python extractor.py "
              "<node_id> <events_file> <output_dir> [weights_file]")
        sys.exit(1)

    node_id     = int(sys.argv[1])
    events_file = sys.argv[2]
    output_dir  = sys.argv[3]
    weights     = pa.load_weights(sys.argv[4]) if len(sys.argv) > 4 else None

    os.makedirs(output_dir, exist_ok=True)
    output_file = os.path.join(output_dir, f'mixed_harmonics_{node_id:04d}.h5')

    flags = dict(FLAGS)
    if weights is not None:
        for name in weights:
            flags[f"use_{name.replace('_weights', '')}_weights"] = True
    settings = Settings(**flags)

    print(f"[Node {node_id}] Reading {events_file} ...")

    # ── read flow events ───────────────────────────────────────────────────
    events = pa.read_events(events_file)
    print(f"[Node {node_id}] Loaded {len(events)} flow events")

    # Run sanity check before committing to the full computation.
    an.sanity_check(events)

    # ── event loop ─────────────────────────────────────────────────────────
    print(f"[Node {node_id}] Running mixed-harmonics analysis ...")
    mh = run(events, settings, weights)
    results = mh.finish()

    # ── save to HDF5 ───────────────────────────────────────────────────────
    print(f"[Node {node_id}] Writing {output_file} ...")
    an.save_hdf5(
        filename = output_file,
        profiles = mh.run_profiles(),
        settings = settings,
        node_id  = node_id,
        results  = results,
    )

    print(f"[Node {node_id}] Done. Output: {output_file}")


if __name__ == "__main__":
    main()
