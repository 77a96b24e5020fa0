import os
import re
from typing import Dict

import numpy as np
import h5py

from kinematics import TRACK_DTYPE, PARTICLE_DTYPE, make_flow_event
from parameters import RP_CUTS, POI_CUTS

WEIGHT_TABLES = ('phi_weights', 'pt_weights', 'eta_weights')


class Parser:
    """
    Index node output folders named:
        out_<campaignID>_<clusterID>_<jobID>

    Produces a dictionary:
        node_id -> {campaignID, clusterID, jobID, UID, folder_path, h5_path}

    Each folder holds the single analysis file written by extractor.py.
    Folders without one (job still running or failed) are kept with
    h5_path None and reported.
    """

    FOLDER_PATTERN = re.compile(r"^out_(\d+)_(\d+)_(\d+)$")

    def __init__(self, base_path: str):
        if not os.path.isdir(base_path):
            raise FileNotFoundError(f"Base path not found: {base_path}")
        self.base_path = base_path
        self.nodes: Dict[int, Dict] = {}
        self.scan()

    def scan(self):
        """
        Scan the base directory and build the node dictionary.
        """
        self.nodes.clear()
        node_id = 0

        for entry in sorted(os.scandir(self.base_path), key=lambda e: e.name):
            if not entry.is_dir():
                continue

            match = self.FOLDER_PATTERN.match(entry.name)
            if not match:
                continue

            campaign_id, cluster_id, job_id = map(int, match.groups())
            try:
                h5_path = self.find_h5_file(entry.path)
            except FileNotFoundError:
                print(f"  Warning: no analysis file in {entry.path}, skipping")
                h5_path = None

            self.nodes[node_id] = {
                "campaignID": campaign_id,
                "clusterID": cluster_id,
                "jobID": job_id,
                "UID": f"{cluster_id}{job_id}",
                "folder_path": entry.path,
                "h5_path": h5_path,
            }
            node_id += 1

    def get_node_folder(self, node_id: int):
        if node_id not in self.nodes:
            raise KeyError(f"Node ID {node_id} not found.")
        return self.nodes[node_id]["folder_path"]

    def find_h5_file(self, folder_path):
        """
        Locates the single .h5 file in the given folder and returns its full path.

        Raises:
            FileNotFoundError: If no .h5 file is found.
            ValueError: If more than one .h5 file is found.
        """
        h5_files = sorted(
            os.path.join(folder_path, f)
            for f in os.listdir(folder_path)
            if f.endswith(".h5")
        )

        if len(h5_files) == 0:
            raise FileNotFoundError(f"No .h5 file found in: {folder_path}")
        if len(h5_files) > 1:
            raise ValueError(f"Expected exactly one .h5 file, but found {len(h5_files)}: {h5_files}")

        return h5_files[0]

    def get_all_h5_paths(self):
        """
        Paths of all analysis files found, in folder order.
        """
        return [node["h5_path"] for node in self.nodes.values() if node["h5_path"] is not None]


# ══════════════════════════════════════════════════════════════════════════════
# Flow events
# ══════════════════════════════════════════════════════════════════════════════

def write_events(filename, events):
    """
    Store a list of flow events as /events/<i> structured datasets.
    """
    with h5py.File(filename, 'w') as f:
        grp = f.create_group('events')
        grp.attrs['n_events'] = len(events)
        for i, ev in enumerate(events):
            ev = np.asarray(ev, dtype=TRACK_DTYPE)
            if len(ev) == 0:
                grp.create_dataset(str(i), data=ev)
            else:
                grp.create_dataset(str(i), data=ev, compression='gzip', compression_opts=4)


def write_particles(filename, particles):
    """
    Store generator-level particles as /particles/<i> structured datasets
    (kinematics.PARTICLE_DTYPE), one dataset per event.
    """
    with h5py.File(filename, 'w') as f:
        grp = f.create_group('particles')
        grp.attrs['n_events'] = len(particles)
        for i, ev in enumerate(particles):
            grp.create_dataset(str(i), data=np.asarray(ev, dtype=PARTICLE_DTYPE))


def read_events(filename, rp_cuts=RP_CUTS, poi_cuts=POI_CUTS):
    """
    Read flow events from an HDF5 file.

    Two layouts are accepted:
        /events/<i>    : flow events written by write_events(), used as they are
        /particles/<i> : particles written by write_particles(); flow events
                         are built with kinematics.make_flow_event() and the
                         RP/POI pT-eta windows rp_cuts/poi_cuts

    Returns
    -------
    events : list of np.ndarray with dtype kinematics.TRACK_DTYPE, in file order
    """
    if not os.path.isfile(filename):
        raise FileNotFoundError(f"Events file not found: {filename}")

    with h5py.File(filename, 'r') as f:
        if 'events' in f:
            grp  = f['events']
            keys = sorted(grp.keys(), key=int)
            return [grp[k][()].astype(TRACK_DTYPE) for k in keys]

        if 'particles' in f:
            grp  = f['particles']
            keys = sorted(grp.keys(), key=int)
            events = []
            for k in keys:
                p = grp[k][()]
                events.append(make_flow_event(p['px'], p['py'], p['pz'], p['charge'],
                                              rp_cuts, poi_cuts))
            print(f"Built {len(events)} flow events from particles "
                  f"(RP cuts {rp_cuts}, POI cuts {poi_cuts})")
            return events

    raise KeyError(f"Neither /events nor /particles found in {filename}")

# ══════════════════════════════════════════════════════════════════════════════
# Particle weights
# ══════════════════════════════════════════════════════════════════════════════

def write_weights(filename, weights):
    """
    Store weight tables; weights is {'phi_weights': {'content', 'edges'}, ...}.
    """
    with h5py.File(filename, 'w') as f:
        for name, table in weights.items():
            grp = f.create_group(name)
            grp.create_dataset('content', data=np.asarray(table['content'], dtype=float))
            grp.create_dataset('edges',   data=np.asarray(table['edges'],   dtype=float))


def load_weights(filename):
    """
    Read the phi, pT and eta weight tables present in filename.

    Returns
    -------
    weights : dict — table name -> {'content': (n,), 'edges': (n+1,)}.
              Tables absent from the file are absent from the dict.
    """
    if not os.path.isfile(filename):
        raise FileNotFoundError(f"Weights file not found: {filename}")

    weights = {}
    with h5py.File(filename, 'r') as f:
        for name in WEIGHT_TABLES:
            if name not in f:
                continue
            weights[name] = {
                'content': f[name]['content'][()],
                'edges':   f[name]['edges'][()],
            }
    print(f"Loaded weights {sorted(weights)} from {filename}")
    return weights
