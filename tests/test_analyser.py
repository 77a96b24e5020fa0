import numpy as np
import pytest

import analyser as an
from kinematics import tracks_from_arrays
from parameters import Settings


def test_flow_vectors_accumulate():
    fv = an.FlowVectors(harmonic=2)
    phi = np.array([0.1, 0.7, 2.5])
    w   = np.array([1.0, 2.0, 0.5])
    fv.add_tracks(phi, w)

    for m in range(an.N_HARMONICS):
        for k in range(an.N_POWERS):
            expected = np.sum(w**k * np.exp(1j * (m + 1) * 2 * phi))
            assert fv.q(m, k) == pytest.approx(expected)
    np.testing.assert_allclose(fv.sum_w, [3.0, 3.5, 5.25, 9.125])
    assert fv.n_rp == 3


def test_multiplicity_powers_finalized_once():
    fv = an.FlowVectors(harmonic=1)
    fv.add_tracks([0.0, 1.0], [2.0, 1.0])

    with pytest.raises(RuntimeError):
        fv.S
    S = fv.finalize()

    sum_w = np.array([2.0, 3.0, 5.0, 9.0])
    for p in range(4):
        np.testing.assert_allclose(S[p], sum_w**(p + 1))
    assert fv.multiplicity == 2.0

    with pytest.raises(RuntimeError):
        fv.finalize()
    with pytest.raises(RuntimeError):
        fv.add_tracks([0.3])


def test_reset_returns_to_idle():
    fv = an.FlowVectors(harmonic=1)
    fv.add_tracks([0.0, 1.0, 2.0])
    fv.finalize()
    fv.reset()

    assert fv.state == an.IDLE
    assert np.all(fv.Q == 0)
    assert np.all(fv.sum_w == 0)
    with pytest.raises(RuntimeError):
        fv.S


def test_particle_weights_product():
    s = Settings(n_bins_phi=4, n_bins_pt=2, pt_min=0.0, pt_max=2.0,
                 use_phi_weights=True, use_pt_weights=True)
    weights = {
        'phi_weights': {'content': np.array([1.0, 2.0, 3.0, 4.0]),
                        'edges':   np.linspace(0, 2 * np.pi, 5)},
        'pt_weights':  {'content': np.array([0.5, 1.5]),
                        'edges':   np.array([0.0, 1.0, 2.0])},
    }
    ev = tracks_from_arrays([0.1, np.pi + 0.1, 0.1], pt=[0.5, 1.5, 3.0])
    w  = an.particle_weights(ev, s, weights)

    # the third track is outside the pT table and gets a pT weight of 1
    np.testing.assert_allclose(w, [1.0 * 0.5, 3.0 * 1.5, 1.0])


def test_particle_weights_disabled():
    ev = tracks_from_arrays([0.1, 0.2])
    np.testing.assert_allclose(an.particle_weights(ev, Settings(), None), [1.0, 1.0])


def test_fill_event_rp_and_poi_are_independent():
    s  = Settings(evaluate_differential=True)
    fv = an.FlowVectors(s.harmonic)
    pairs = an.PairProfiles(np.linspace(0, s.pt_max, s.n_bins_pt + 1))
    ev = tracks_from_arrays([0.1, 0.5, 1.0, 2.0],
                            pt=[1.05, 1.05, 1.05, 1.05],
                            is_rp=[True, True, False, False],
                            is_poi=[False, True, True, True])
    an.fill_event(ev, fv, s, pairs=pairs)

    assert fv.state == an.FINALIZED
    assert fv.multiplicity == 2
    # 3 POIs -> 6 ordered pairs
    assert pairs.re_p[0].entries.sum() == 6
    assert pairs.im_p[1].entries.sum() == 6
    # the RP+POI track is the 1st leg in 2 pairs and the 2nd leg in 2 pairs
    assert pairs.overlap[0][0].entries.sum() == 2
    assert pairs.overlap[1][0].entries.sum() == 2

    with pytest.raises(RuntimeError):
        an.fill_event(ev, fv, s, pairs=pairs)


def test_opposite_charge_pairs():
    s  = Settings(evaluate_differential=True, opposite_charges_poi=True)
    fv = an.FlowVectors(s.harmonic)
    pairs = an.PairProfiles(np.linspace(0, s.pt_max, s.n_bins_pt + 1))
    ev = tracks_from_arrays([0.1, 0.5, 1.0], charge=[1, 1, -1], is_rp=False, is_poi=True)
    an.fill_event(ev, fv, s, pairs=pairs)

    # (0,2), (2,0), (1,2), (2,1)
    assert pairs.re_p[0].entries.sum() == 4


def test_empty_event():
    s  = Settings()
    fv = an.FlowVectors(s.harmonic)
    an.fill_event(tracks_from_arrays([]), fv, s)
    assert fv.multiplicity == 0
