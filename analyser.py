import numpy as np
import h5py

from parameters import PHI_MIN
from profiles import Profile


# States of the per-event accumulator.
IDLE         = 'IDLE'
ACCUMULATING = 'ACCUMULATING'
FINALIZED    = 'FINALIZED'
REDUCING     = 'REDUCING'

# Q_{m,k}: m = 0, 1 for harmonics n and 2n; k = 0..3 powers of the particle weight.
N_HARMONICS = 2
N_POWERS    = 4

PAIR_VARIABLES = ('PtSum', 'PtDiff')      # (pT1+pT2)/2 and |pT1-pT2|
OVERLAP_LEGS   = ('1st', '2nd')           # which POI of the pair is also an RP


# ══════════════════════════════════════════════════════════════════════════════
# Section 1: flow vectors Q_{n,k} and multiplicity powers S_{p,k}
# ══════════════════════════════════════════════════════════════════════════════

class FlowVectors:
    """
    Event-by-event flow vectors of the reference particles.

        Q[m, k] = sum_RP  w^k exp(i (m+1) n phi)     m = 0, 1   k = 0..3
        sum_w[k] = sum_RP w^k

    After the track loop finalize() builds the multiplicity power table

        S[p, k] = (sum_w[k])^(p+1)                   p = 0..3   k = 0..3

    exactly once. S is a separate array from sum_w, and reading it before
    finalize() raises. reset() zeroes everything for the next event.
    """

    def __init__(self, harmonic):
        self.harmonic = harmonic
        self.Q        = np.zeros((N_HARMONICS, N_POWERS), dtype=np.complex128)
        self.sum_w    = np.zeros(N_POWERS)
        self.n_rp     = 0
        self._S       = None
        self.state    = IDLE

    def add_tracks(self, phi, w=None):
        """Accumulate Q and sum_w over reference particles with angles phi."""
        if self.state == FINALIZED:
            raise RuntimeError("FlowVectors.add_tracks() called after finalize(); "
                               "reset() must be called between events")
        phi = np.atleast_1d(np.asarray(phi, dtype=float))
        if len(phi) == 0:
            return
        w = np.ones_like(phi) if w is None else np.atleast_1d(np.asarray(w, dtype=float))

        powers = w[:, np.newaxis] ** np.arange(N_POWERS)[np.newaxis, :]          # (N, k)
        m      = np.arange(1, N_HARMONICS + 1)
        phases = np.exp(1j * self.harmonic * m[np.newaxis, :] * phi[:, np.newaxis])  # (N, m)

        self.Q     += phases.T @ powers
        self.sum_w += powers.sum(axis=0)
        self.n_rp  += len(phi)
        self.state  = ACCUMULATING

    def finalize(self):
        if self.state == FINALIZED:
            raise RuntimeError("FlowVectors.finalize() called twice for the same event")
        p = np.arange(N_POWERS)[:, np.newaxis]
        self._S    = self.sum_w[np.newaxis, :] ** (p + 1)
        self.state = FINALIZED
        return self._S

    @property
    def S(self):
        if self._S is None:
            raise RuntimeError("S_{p,k} read before FlowVectors.finalize()")
        return self._S

    @property
    def multiplicity(self):
        """Number of RPs, S[0, 0]."""
        return self.S[0, 0]

    def q(self, harmonic_index, power=0):
        """Q-vector in harmonic (harmonic_index+1)*n with weight power k."""
        return self.Q[harmonic_index, power]

    def reset(self):
        self.Q.fill(0.0)
        self.sum_w.fill(0.0)
        self.n_rp  = 0
        self._S    = None
        self.state = IDLE


# ══════════════════════════════════════════════════════════════════════════════
# Section 2: POI pair profiles for the differential correlator
# ══════════════════════════════════════════════════════════════════════════════

class PairProfiles:
    """
    Event-by-event profiles of POI pairs, binned in (pT1+pT2)/2 and |pT1-pT2|.

        re_p[sd]          : <cos n(psi1+psi2)>
        im_p[sd]          : <sin n(psi1+psi2)>
        overlap[leg][sd]  : <cos n(psi1-psi2)> for pairs whose 1st/2nd POI
                            is also an RP, weighted by that RP's weight

    Un-normalised content (content * entries) is what the differential
    correlator needs, so callers read sum_wy and sum_w directly.
    """

    def __init__(self, pt_edges):
        self.re_p = [Profile(f're_p_{sd}', len(pt_edges) - 1, pt_edges)
                     for sd in PAIR_VARIABLES]
        self.im_p = [Profile(f'im_p_{sd}', len(pt_edges) - 1, pt_edges)
                     for sd in PAIR_VARIABLES]
        self.overlap = [[Profile(f'overlap_{fs}_{sd}', len(pt_edges) - 1, pt_edges)
                         for sd in PAIR_VARIABLES]
                        for fs in OVERLAP_LEGS]

    def all_profiles(self):
        yield from self.re_p
        yield from self.im_p
        for leg in self.overlap:
            yield from leg

    def fill_pairs(self, harmonic, psi1, pt1, rp1, w1, psi2, pt2, rp2, w2):
        """Fill all profiles for arrays of ordered POI pairs (1st, 2nd)."""
        x = ((pt1 + pt2) / 2.0, np.abs(pt1 - pt2))
        cos_sum = np.cos(harmonic * (psi1 + psi2))
        sin_sum = np.sin(harmonic * (psi1 + psi2))
        cos_dif = np.cos(harmonic * (psi1 - psi2))

        for sd in range(len(PAIR_VARIABLES)):
            self.re_p[sd].fill_x_many(x[sd], cos_sum)
            self.im_p[sd].fill_x_many(x[sd], sin_sum)
            self.overlap[0][sd].fill_x_many(x[sd][rp1], cos_dif[rp1], w1[rp1])
            self.overlap[1][sd].fill_x_many(x[sd][rp2], cos_dif[rp2], w2[rp2])

    def reset(self):
        for prof in self.all_profiles():
            prof.reset()


# ══════════════════════════════════════════════════════════════════════════════
# Section 3: particle weights and the per-event fill
# ══════════════════════════════════════════════════════════════════════════════

def particle_weights(event, settings, weights=None):
    """
    Product of phi, pT and eta weights for every track of the event.

    A weight is 1 when its table is disabled or the track falls outside
    the table.
    """
    w = np.ones(len(event))
    if weights is None:
        return w

    binning = (
        ('phi', settings.use_phi_weights, PHI_MIN,          settings.phi_bin_width),
        ('pt',  settings.use_pt_weights,  settings.pt_min,  settings.pt_bin_width),
        ('eta', settings.use_eta_weights, settings.eta_min, settings.eta_bin_width),
    )
    for var, use, lo, width in binning:
        table = weights.get(f'{var}_weights')
        if not use or table is None or not width:
            continue
        content = np.asarray(table['content'], dtype=float)
        ib = np.floor((event[var] - lo) / width).astype(np.int64)
        ok = (ib >= 0) & (ib < len(content))
        w[ok] *= content[ib[ok]]
    return w


def fill_event(event, flow_vectors, settings, weights=None, pairs=None):
    """
    Accumulate one flow event and finalize S_{p,k}.

    Parameters
    ----------
    event        : np.ndarray (kinematics.TRACK_DTYPE)
    flow_vectors : FlowVectors — must be reset (IDLE)
    settings     : parameters.Settings
    weights      : dict or None — tables from parser.load_weights()
    pairs        : PairProfiles or None — filled only in differential mode

    Returns
    -------
    flow_vectors, after finalize()
    """
    if flow_vectors.state != IDLE:
        raise RuntimeError(f"fill_event() needs a reset accumulator, "
                           f"found state {flow_vectors.state}")

    is_rp  = np.asarray(event['is_rp'],  dtype=bool)
    is_poi = np.asarray(event['is_poi'], dtype=bool)
    w      = particle_weights(event, settings, weights)

    # ── reference particles: Q_{n,k} and sum_w ────────────────────────────
    flow_vectors.add_tracks(event['phi'][is_rp], w[is_rp])

    # ── particles of interest: ordered pairs of distinct POIs ───────────────
    if pairs is not None:
        poi = np.nonzero(is_poi)[0]
        if len(poi) > 1:
            i, j = np.meshgrid(poi, poi, indexing='ij')
            keep = i != j
            if settings.opposite_charges_poi:
                keep &= event['charge'][i] != event['charge'][j]
            i, j = i[keep], j[keep]

            pairs.fill_pairs(flow_vectors.harmonic,
                             event['phi'][i], event['pt'][i], is_rp[i], w[i],
                             event['phi'][j], event['pt'][j], is_rp[j], w[j])

    flow_vectors.finalize()
    return flow_vectors


# ══════════════════════════════════════════════════════════════════════════════
# Section 4: Sanity checks
# ══════════════════════════════════════════════════════════════════════════════

def sanity_check(events):
    """
    Print basic diagnostics on the first flow event to verify the input
    was read correctly before committing to the full analysis.

    Checks performed:
    - Total track count, RPs and POIs in the first event
    - phi range (should be inside [0, 2pi))
    - Mean pT of the RPs
    """
    if len(events) == 0:
        print("WARNING: no events found — check input file path.")
        return

    ev = events[0]
    print("=" * 55)
    print("Sanity check — first flow event")
    print(f"  N tracks           : {len(ev)}")
    print(f"  N RPs              : {int(ev['is_rp'].sum())}")
    print(f"  N POIs             : {int(ev['is_poi'].sum())}")

    if len(ev) > 0:
        print(f"  phi range (rad)    : {ev['phi'].min():.3f} — {ev['phi'].max():.3f}")
        if ev['phi'].min() < 0 or ev['phi'].max() >= 2 * np.pi:
            print("  WARNING: phi outside [0, 2pi), weights lookup will be wrong")
        rp = ev[ev['is_rp']]
        if len(rp) > 0:
            print(f"  RP <pT> (GeV)      : {rp['pt'].mean():.4f}")

    print(f"  Total events       : {len(events)}")
    print("=" * 55)


# ══════════════════════════════════════════════════════════════════════════════
# Section 5: Output
# ══════════════════════════════════════════════════════════════════════════════

def _write_group(grp, data):
    """Write a (nested) dict of arrays and scalars into an HDF5 group."""
    for key, val in data.items():
        if isinstance(val, dict):
            _write_group(grp.create_group(key), val)
            continue
        arr = np.asarray(val)
        if arr.dtype.kind in 'US':
            grp.attrs[key] = [str(v) for v in np.atleast_1d(arr)]
        elif arr.ndim == 0:
            grp.create_dataset(key, data=arr)
        else:
            grp.create_dataset(key, data=arr, compression='gzip', compression_opts=4)


def save_hdf5(filename, profiles, settings, node_id=0, results=None):
    """
    Write the all-event profiles of one analysis (and optionally its final
    results) to an HDF5 file that post_process.merge_files() can combine.

    File structure
    --------------
    /metadata/
        attrs: node_id, one attr per Settings field
    /profiles/<name>/
        attrs: title
        sum_w, sum_wy, sum_wy2, sum_w2 : float64, profile shape
        edges                          : float64 (n_bins+1,), binned profiles only
    /results/                          (only if results is given)
        measured, corrected, bias, ... : scalars
        measured_vs_m, ...             : (n_mult_bins+2,)
        non_isotropic_terms_vs_m       : (8, n_mult_bins+2)
        attrs: mult_labels
        differential/<PtSum|PtDiff>/   : pt_cents, value, err, entries

    Parameters
    ----------
    filename : str — output HDF5 file path
    profiles : dict — name -> profiles.Profile, from MixedHarmonics.run_profiles()
    settings : parameters.Settings
    node_id  : int — unique integer ID of the node/job that produced the file
    results  : dict or None — output of MixedHarmonics.finish()
    """
    with h5py.File(filename, 'w') as f:

        # ── metadata group ─────────────────────────────────────────────────
        meta = f.create_group('metadata')
        meta.attrs['node_id'] = node_id
        for key, val in settings.as_dict().items():
            meta.attrs[key] = val

        # ── all-event profiles ───────────────────────────────────────────────
        prof_grp = f.create_group('profiles')
        for name, prof in profiles.items():
            grp = prof_grp.create_group(name)
            grp.attrs['title'] = prof.title
            _write_group(grp, prof.to_dict())

        # ── final numbers ─────────────────────────────────────────────────
        if results is not None:
            _write_group(f.create_group('results'),
                         {k: v for k, v in results.items() if k != 'settings'})

    print(f"Saved {filename}")
