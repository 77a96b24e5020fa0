import enum

import numpy as np
import h5py

from parameters import Settings
from profiles import Profile


def inspect_hdf5(filename):
    """Print the full structure of an HDF5 file."""
    with h5py.File(filename, 'r') as f:

        print(f"File: {filename}")
        print("=" * 55)

        def print_tree(name, obj):
            indent = '  ' * name.count('/')
            if isinstance(obj, h5py.Group):
                print(f"{indent}[GROUP]  /{name}")
                for k, v in obj.attrs.items():
                    print(f"{indent}  attr: {k} = {v}")
            elif isinstance(obj, h5py.Dataset):
                print(f"{indent}[DATA]   /{name}  shape={obj.shape}  dtype={obj.dtype}")

        f.visititems(print_tree)


def _read_group(grp):
    out = {}
    for key, obj in grp.items():
        if isinstance(obj, h5py.Group):
            out[key] = _read_group(obj)
        else:
            val = obj[()]
            out[key] = val.item() if np.ndim(val) == 0 else val
    for key, val in grp.attrs.items():
        out[key] = [str(v) for v in val]
    return out


def load_hdf5(filename):
    """
    Load an analysis file written by analyser.save_hdf5().

    Settings are rebuilt from the metadata so the merging step does not need
    to know the original configuration.

    Returns
    -------
    settings : parameters.Settings
    profiles : dict — name -> profiles.Profile
    results  : dict or None
    """
    with h5py.File(filename, 'r') as f:
        meta = f['metadata']
        settings = Settings.from_dict({k: (v.item() if hasattr(v, 'item') else v)
                                       for k, v in meta.attrs.items()})

        profiles = {}
        for name, grp in f['profiles'].items():
            arrays = {key: grp[key][()] for key in grp.keys()}
            profiles[name] = Profile.from_dict(name, arrays, title=str(grp.attrs.get('title', '')))

        results = _read_group(f['results']) if 'results' in f else None

    return settings, profiles, results


class NonIsotropicTerm(enum.IntEnum):
    """
    Non-isotropic terms in the decomposition of <<cos[n(phi1+phi2-2phi3)]>>.
    For a detector with uniform acceptance all of them vanish.
    """
    COS_N_PHI1              = 0   # <<cos(n phi1)>>
    SIN_N_PHI1              = 1   # <<sin(n phi1)>>
    COS_2N_PHI1             = 2   # <<cos(2n phi1)>>
    SIN_2N_PHI1             = 3   # <<sin(2n phi1)>>
    COS_N_PHI1_PLUS_PHI2    = 4   # <<cos(n(phi1+phi2))>>
    SIN_N_PHI1_PLUS_PHI2    = 5   # <<sin(n(phi1+phi2))>>
    COS_N_2PHI1_MINUS_PHI2  = 6   # <<cos(n(2phi1-phi2))>>
    SIN_N_2PHI1_MINUS_PHI2  = 7   # <<sin(n(2phi1-phi2))>>


N_NON_ISOTROPIC_TERMS = len(NonIsotropicTerm)

ONE_PARTICLE_TERMS = (NonIsotropicTerm.COS_N_PHI1, NonIsotropicTerm.SIN_N_PHI1,
                      NonIsotropicTerm.COS_2N_PHI1, NonIsotropicTerm.SIN_2N_PHI1)
TWO_PARTICLE_TERMS = (NonIsotropicTerm.COS_N_PHI1_PLUS_PHI2,
                      NonIsotropicTerm.SIN_N_PHI1_PLUS_PHI2,
                      NonIsotropicTerm.COS_N_2PHI1_MINUS_PHI2,
                      NonIsotropicTerm.SIN_N_2PHI1_MINUS_PHI2)


def term_labels(harmonic):
    """Human-readable labels of the non-isotropic terms for harmonic n."""
    n  = '' if harmonic == 1 else str(harmonic)
    n2 = str(2 * harmonic)
    return {
        NonIsotropicTerm.COS_N_PHI1:             f'cos({n}phi1)',
        NonIsotropicTerm.SIN_N_PHI1:             f'sin({n}phi1)',
        NonIsotropicTerm.COS_2N_PHI1:            f'cos({n2}phi1)',
        NonIsotropicTerm.SIN_2N_PHI1:            f'sin({n2}phi1)',
        NonIsotropicTerm.COS_N_PHI1_PLUS_PHI2:   f'cos[{n}(phi1+phi2)]',
        NonIsotropicTerm.SIN_N_PHI1_PLUS_PHI2:   f'sin[{n}(phi1+phi2)]',
        NonIsotropicTerm.COS_N_2PHI1_MINUS_PHI2: f'cos[{n}(2phi1-phi2)]',
        NonIsotropicTerm.SIN_N_2PHI1_MINUS_PHI2: f'sin[{n}(2phi1-phi2)]',
    }


# ══════════════════════════════════════════════════════════════════════════════
# Section 1: multiplicity binning
# ══════════════════════════════════════════════════════════════════════════════

def multiplicity_bin(mult, min_multiplicity, bin_width, n_bins):
    """
    Index of multiplicity M in a table of n_bins+2 bins:

        0            : M < min_multiplicity               (underflow)
        1 .. n_bins  : min + (b-1)*width <= M < min + b*width
        n_bins + 1   : M >= min + n_bins*width            (overflow)
    """
    if mult < min_multiplicity:
        return 0
    if mult >= min_multiplicity + n_bins * bin_width:
        return n_bins + 1
    return 1 + int(np.floor((mult - min_multiplicity) / bin_width))


def multiplicity_bin_labels(min_multiplicity, bin_width, n_bins):
    labels = [f'M < {min_multiplicity:g}']
    for b in range(n_bins):
        lo = min_multiplicity + b * bin_width
        labels.append(f'{lo:g} <= M < {lo + bin_width:g}')
    labels.append(f'M >= {min_multiplicity + n_bins * bin_width:g}')
    return labels


# ══════════════════════════════════════════════════════════════════════════════
# Section 2: correlators from Q_{n,k} and S_{p,k}
# ══════════════════════════════════════════════════════════════════════════════

def three_particle_correlator(flow_vectors, use_particle_weights=False):
    """
    Single-event 3-p correlator <cos[n(phi1+phi2-2phi3)]> in terms of
    Q-vectors, without nested loops over particle triplets.

    Unweighted (Bilandzic et al.):

        <3> = [ Re(Q_n Q_n Q_2n^*) - 2|Q_n|^2 - |Q_2n|^2 + 2M ]
              / [ M (M-1) (M-2) ]

    Weighted (Q_{n,k}, S_{p,k} = (sum w^k)^p):

        <3> = [ Re(Q_{n,1}^2 Q_{2n,1}^*) - Re(Q_{2n,2} Q_{2n,1}^*)
                - 2 Re(Q_{n,1} Q_{n,2}^*) + 2 S_{1,3} ]
              / [ S_{3,1} - 3 S_{1,2} S_{1,1} + 2 S_{1,3} ]

    Parameters
    ----------
    flow_vectors         : analyser.FlowVectors — finalized
    use_particle_weights : bool

    Returns
    -------
    (value, event_weight) or None if M < 3
    """
    S    = flow_vectors.S
    mult = S[0, 0]
    if mult < 3:
        return None

    if not use_particle_weights:
        dReQ1n, dImQ1n = flow_vectors.Q[0, 0].real, flow_vectors.Q[0, 0].imag
        dReQ2n, dImQ2n = flow_vectors.Q[1, 0].real, flow_vectors.Q[1, 0].imag

        weight = mult * (mult - 1.) * (mult - 2.)
        three1n1n2n = (dReQ1n**2 * dReQ2n + 2. * dReQ1n * dImQ1n * dImQ2n - dImQ1n**2 * dReQ2n
                       - 2. * (dReQ1n**2 + dImQ1n**2)
                       - (dReQ2n**2 + dImQ2n**2) + 2. * mult) / weight
        return three1n1n2n, weight

    Q1n1, Q1n2 = flow_vectors.Q[0, 1], flow_vectors.Q[0, 2]
    Q2n1, Q2n2 = flow_vectors.Q[1, 1], flow_vectors.Q[1, 2]

    weight = S[2, 1] - 3. * S[0, 2] * S[0, 1] + 2. * S[0, 3]
    if weight <= 0:
        return None
    numerator = ((Q1n1**2 * np.conj(Q2n1)).real
                 - (Q2n2 * np.conj(Q2n1)).real
                 - 2. * (Q1n1 * np.conj(Q1n2)).real
                 + 2. * S[0, 3])
    return numerator / weight, weight


def non_isotropic_terms(flow_vectors, use_particle_weights=False):
    """
    Single-event non-isotropic terms.

        1-particle (M > 0, weight M):
            <cos n phi1> = Re Q_n / M,      <sin n phi1> = Im Q_n / M
            <cos 2n phi1> = Re Q_2n / M,    <sin 2n phi1> = Im Q_2n / M
        2-particle (M > 1, weight M(M-1)):
            <e^{in(phi1+phi2)}>  = (Q_n^2 - Q_2n) / (M(M-1))
            <e^{in(2phi1-phi2)}> = (Q_2n Q_n^* - Q_n) / (M(M-1))

    With particle weights M is replaced by S_{1,1}, M(M-1) by
    S_{1,1}^2 - S_{1,2}, and the diagonal terms by Q_{2n,2} and Q_{n,2}.

    Returns
    -------
    list of (NonIsotropicTerm, value, event_weight) — only the terms
    defined for this event's multiplicity
    """
    S    = flow_vectors.S
    mult = S[0, 0]
    out  = []

    if not use_particle_weights:
        Q1n, Q2n = flow_vectors.Q[0, 0], flow_vectors.Q[1, 0]
        w1 = mult
        w2 = mult * (mult - 1.)
        diag_2n, diag_1n = Q2n, Q1n
    else:
        Q1n, Q2n = flow_vectors.Q[0, 1], flow_vectors.Q[1, 1]
        w1 = S[0, 1]
        w2 = S[1, 1] - S[0, 2]
        diag_2n, diag_1n = flow_vectors.Q[1, 2], flow_vectors.Q[0, 2]

    # 1-particle terms:
    if mult > 0 and w1 > 0:
        one = (Q1n.real / w1, Q1n.imag / w1, Q2n.real / w1, Q2n.imag / w1)
        out += [(term, value, w1) for term, value in zip(ONE_PARTICLE_TERMS, one)]

    # 2-particle terms:
    if mult > 1 and w2 > 0:
        plus  = (Q1n**2 - diag_2n) / w2
        minus = (Q2n * np.conj(Q1n) - diag_1n) / w2
        two = (plus.real, plus.imag, minus.real, minus.imag)
        out += [(term, value, w2) for term, value in zip(TWO_PARTICLE_TERMS, two)]

    return out


def differential_correlator(flow_vectors, pairs, use_particle_weights=False):
    """
    Single-event reduced correlator <cos[n(psi1+psi2-2phi3)]> per pair bin.

    For every bin of (pT1+pT2)/2 and |pT1-pT2|:

        weight = mp*M - mOverlap1 - mOverlap2
        value  = (Re p_n Re Q_2n + Im p_n Im Q_2n - overlap1 - overlap2) / weight

    where p_n, overlap1 and overlap2 are un-normalised pair sums. The
    overlap terms remove the pairs in which a POI is also the RP phi3.

    Parameters
    ----------
    flow_vectors : analyser.FlowVectors — finalized
    pairs        : analyser.PairProfiles — filled for the same event

    Returns
    -------
    list over pair variables of (values, weights), np.ndarray (n_bins,)
    each. Bins with weight <= 0 have value 0 and must not be filled.
    """
    if not use_particle_weights:
        mult = flow_vectors.S[0, 0]
        Q2n  = flow_vectors.Q[1, 0]
    else:
        mult = flow_vectors.S[0, 1]
        Q2n  = flow_vectors.Q[1, 1]

    out = []
    for sd in range(len(pairs.re_p)):
        p1nRe    = pairs.re_p[sd].sum_wy
        p1nIm    = pairs.im_p[sd].sum_wy
        overlap1 = pairs.overlap[0][sd].sum_wy
        overlap2 = pairs.overlap[1][sd].sum_wy
        mp        = pairs.re_p[sd].sum_w
        mOverlap1 = pairs.overlap[0][sd].sum_w
        mOverlap2 = pairs.overlap[1][sd].sum_w

        weight = mp * mult - mOverlap1 - mOverlap2
        ok     = weight > 0.
        values = np.zeros_like(weight)
        values[ok] = ((p1nRe[ok] * Q2n.real + p1nIm[ok] * Q2n.imag
                       - overlap1[ok] - overlap2[ok]) / weight[ok])
        out.append((values, weight))
    return out


# ══════════════════════════════════════════════════════════════════════════════
# Section 3: correction for detector effects
# ══════════════════════════════════════════════════════════════════════════════

def correct_for_detector_effects(measured, terms):
    """
    Remove the non-isotropic contributions from the measured 3-p correlator.

    Works on a scalar measured value with terms of shape (8,), or on
    arrays with terms of shape (8, n_bins).
    """
    t = NonIsotropicTerm
    c1, s1   = terms[t.COS_N_PHI1],  terms[t.SIN_N_PHI1]
    c2, s2   = terms[t.COS_2N_PHI1], terms[t.SIN_2N_PHI1]
    cpp, spp = terms[t.COS_N_PHI1_PLUS_PHI2],   terms[t.SIN_N_PHI1_PLUS_PHI2]
    cpm, spm = terms[t.COS_N_2PHI1_MINUS_PHI2], terms[t.SIN_N_2PHI1_MINUS_PHI2]

    return (measured
            - c2 * cpp
            - s2 * spp
            - 2. * c1 * cpm
            - 2. * s1 * spm
            + 2. * c2 * (c1**2 - s1**2)
            + 4. * s2 * c1 * s1)


def detector_bias(corrected, measured):
    """corrected/measured, 0 where the measured correlator is 0."""
    corrected = np.asarray(corrected, dtype=float)
    measured  = np.asarray(measured,  dtype=float)
    with np.errstate(divide='ignore', invalid='ignore'):
        bias = np.where(measured != 0, corrected / np.where(measured != 0, measured, 1.0), 0.0)
    return bias if bias.ndim else float(bias)
