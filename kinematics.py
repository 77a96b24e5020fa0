import numpy as np
# Track kinematics and the flow-event layout consumed by the analysis.

# One flow event = one structured array with a row per track.
TRACK_DTYPE = np.dtype([
    ('phi',    np.float64),   # azimuth in [0, 2pi)
    ('pt',     np.float64),
    ('eta',    np.float64),
    ('charge', np.int32),
    ('is_rp',  np.bool_),     # reference particle: enters Q_{n,k}
    ('is_poi', np.bool_),     # particle of interest: enters the pair profiles
])

# Generator-level particles, before the RP/POI selection.
PARTICLE_DTYPE = np.dtype([
    ('px',     np.float64),
    ('py',     np.float64),
    ('pz',     np.float64),
    ('charge', np.int32),
])


def map_ang_0to2pi(x):
    return np.mod(x, 2 * np.pi)


def get_kinematics(px, py, pz):
    px, py, pz = np.asarray(px, float), np.asarray(py, float), np.asarray(pz, float)

    pt  = np.sqrt(px**2 + py**2)
    pv  = np.sqrt(px**2 + py**2 + pz**2)
    phi = map_ang_0to2pi(np.arctan2(py, px))
    # Protect against log(0) for particles going exactly along the beam axis:
    # the ratio becomes inf (or 0) and those entries are NaN-masked.
    denom = pv - pz
    ratio = np.divide(pv + pz, denom, out=np.full_like(pv, np.inf), where=denom > 0)
    valid = np.isfinite(ratio) & (ratio > 0)
    psrap = np.full_like(pv, np.nan)
    psrap[valid] = 0.5 * np.log(ratio[valid])

    return pt, phi, psrap


def in_window(pt, eta, cuts):
    """
    Parameters
    ----------
    pt, eta : np.ndarray
    cuts    : dict — {'pt': [min, max], 'eta': [min, max]}, half-open windows

    Returns
    -------
    mask : boolean np.ndarray
    """
    pt_cut, eta_cut = cuts['pt'], cuts['eta']
    return ((pt >= pt_cut[0]) & (pt < pt_cut[1])
            & (eta >= eta_cut[0]) & (eta < eta_cut[1]))


def make_flow_event(px, py, pz, charge, rp_cuts, poi_cuts):
    """
    Build a flow event from particle momenta.

    A track can be RP and POI at the same time; tracks that are neither
    are kept but ignored by the analysis.

    Parameters
    ----------
    px, py, pz : array-like — momentum components [GeV]
    charge     : array-like — electric charge
    rp_cuts    : dict — pT/eta window for reference particles
    poi_cuts   : dict — pT/eta window for particles of interest

    Returns
    -------
    event : np.ndarray with dtype TRACK_DTYPE
    """
    pt, phi, eta = get_kinematics(px, py, pz)
    ok = np.isfinite(eta)

    event = np.zeros(len(pt), dtype=TRACK_DTYPE)
    event['phi']    = phi
    event['pt']     = pt
    event['eta']    = np.where(ok, eta, 0.0)
    event['charge'] = np.asarray(charge, dtype=np.int32)
    event['is_rp']  = ok & in_window(pt, eta, rp_cuts)
    event['is_poi'] = ok & in_window(pt, eta, poi_cuts)
    return event


def tracks_from_arrays(phi, pt=None, eta=None, charge=None, is_rp=True, is_poi=False):
    """
    Build a flow event directly from azimuthal angles (and optional
    kinematics). Scalars for the flags are broadcast to all tracks.
    """
    phi = np.atleast_1d(np.asarray(phi, dtype=float))
    n   = len(phi)

    event = np.zeros(n, dtype=TRACK_DTYPE)
    event['phi']    = map_ang_0to2pi(phi)
    event['pt']     = 1.0 if pt is None else pt
    event['eta']    = 0.0 if eta is None else eta
    event['charge'] = 1 if charge is None else charge
    event['is_rp']  = is_rp
    event['is_poi'] = is_poi
    return event
