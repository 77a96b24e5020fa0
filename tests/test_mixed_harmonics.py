import itertools

import numpy as np
import pytest

import analyser as an
from kinematics import tracks_from_arrays
from mixed_harmonics import MixedHarmonics
from parameters import Settings

from conftest import brute_force_3p


def quiet(**kwargs):
    kwargs.setdefault('print_on_the_screen', False)
    return Settings(**kwargs)


def unit_weights(settings):
    return {
        'phi_weights': {'content': np.ones(settings.n_bins_phi),
                        'edges':   np.linspace(0, 2 * np.pi, settings.n_bins_phi + 1)},
        'pt_weights':  {'content': np.ones(settings.n_bins_pt),
                        'edges':   np.linspace(settings.pt_min, settings.pt_max,
                                               settings.n_bins_pt + 1)},
        'eta_weights': {'content': np.ones(settings.n_bins_eta),
                        'edges':   np.linspace(settings.eta_min, settings.eta_max,
                                               settings.n_bins_eta + 1)},
    }


# ── preconditions ─────────────────────────────────────────────────────────────

def test_make_before_init():
    mh = MixedHarmonics(quiet())
    with pytest.raises(RuntimeError, match='check_objects_used_in_make'):
        mh.make(tracks_from_arrays([0.1, 0.2, 0.3]))


def test_finish_before_init():
    mh = MixedHarmonics(quiet())
    with pytest.raises(RuntimeError, match='check_objects_used_in_finish'):
        mh.finish()


def test_finish_needs_bias_vs_m_table():
    mh = MixedHarmonics(quiet()).init()
    mh.detector_bias_vs_m_hist = None
    with pytest.raises(RuntimeError, match='detector_bias_vs_m_hist'):
        mh.finish()


def test_init_cross_checks_settings():
    with pytest.raises(ValueError):
        MixedHarmonics(quiet(harmonic=0)).init()


def test_missing_weights_table():
    with pytest.raises(KeyError, match='phi_weights'):
        MixedHarmonics(quiet(use_phi_weights=True)).init()


def test_weights_binning_mismatch():
    s = quiet(use_pt_weights=True)
    weights = {'pt_weights': {'content': np.ones(50), 'edges': np.linspace(0, 10, 51)}}
    with pytest.raises(ValueError, match='Inconsistent binning'):
        MixedHarmonics(s, weights).init()


# ── per event ─────────────────────────────────────────────────────────────────

def test_isotropic_event_and_multiplicity_bin():
    mh = MixedHarmonics(quiet()).init()
    mult = 5
    mh.make(tracks_from_arrays(2 * np.pi * np.arange(mult) / mult))

    assert mh.three_p_correlator.content[0] == pytest.approx(1.0 / 6.0)
    assert mh.three_p_correlator.entries[0] == 60
    # Mmin=1, width 2: M=5 falls in bin 1 + (5-1)//2 = 3
    assert mh.three_p_correlator_vs_m.entries[3] == 60
    assert mh.three_p_correlator_vs_m.entries.sum() == 60
    assert mh.non_isotropic_terms.entries[0] == 5
    assert mh.non_isotropic_terms.entries[4] == 20


def test_small_events_skip_correlator():
    mh = MixedHarmonics(quiet()).init()
    mh.make(tracks_from_arrays([]))
    mh.make(tracks_from_arrays([0.3]))
    mh.make(tracks_from_arrays([0.3, 1.2]))

    assert mh.three_p_correlator.entries[0] == 0
    np.testing.assert_allclose(mh.non_isotropic_terms.entries,
                               [3, 3, 3, 3, 2, 2, 2, 2])
    assert mh.multiplicity_rp.entries[0] == 3
    assert mh.multiplicity_rp.content[0] == pytest.approx(1.0)


def test_event_by_event_state_is_reset():
    mh = MixedHarmonics(quiet(evaluate_differential=True)).init()
    ev = tracks_from_arrays([0.1, 0.9, 2.0, 4.0], pt=[0.5, 1.0, 1.5, 2.0], is_poi=True)
    mh.make(ev)
    once = mh.three_p_correlator.content.copy()

    assert mh.state == an.IDLE
    assert mh.flow_vectors.state == an.IDLE
    assert np.all(mh.flow_vectors.Q == 0)
    assert all(p.entries.sum() == 0 for p in mh.pairs.all_profiles())

    mh.make(ev)
    np.testing.assert_allclose(mh.three_p_correlator.content, once)
    assert mh.three_p_correlator.entries[0] == 2 * 24


def test_matches_triplet_loop(random_events):
    mh = MixedHarmonics(quiet(harmonic=2)).init()
    num = den = 0.0
    for ev in random_events:
        mh.make(ev)
        phi = ev['phi'][ev['is_rp']]
        m = len(phi)
        if m >= 3:
            w = m * (m - 1) * (m - 2)
            num += w * brute_force_3p(phi, 2)
            den += w

    assert mh.three_p_correlator.content[0] == pytest.approx(num / den, abs=1e-12)


def test_differential_matches_pair_loop():
    mh = MixedHarmonics(quiet(evaluate_differential=True)).init()
    phi    = np.array([0.2, 1.1, 2.3, 3.9, 5.0, 0.7, 4.4])
    is_rp  = np.array([True, True, True, True, True, False, False])
    is_poi = np.array([False, False, False, True, False, True, True])
    ev = tracks_from_arrays(phi, pt=1.05, is_rp=is_rp, is_poi=is_poi)
    mh.make(ev)

    num = den = 0.0
    pois, rps = np.nonzero(is_poi)[0], np.nonzero(is_rp)[0]
    for i, j in itertools.permutations(pois, 2):
        for k in rps:
            if k in (i, j):
                continue
            num += np.cos(phi[i] + phi[j] - 2 * phi[k])
            den += 1

    for prof in mh.three_p_correlator_vs_pt:
        filled = np.nonzero(prof.entries)[0]
        assert len(filled) == 1
        assert prof.entries[filled[0]] == den
        assert prof.content[filled[0]] == pytest.approx(num / den, abs=1e-12)


def test_differential_not_filled_without_pairs():
    mh = MixedHarmonics(quiet(evaluate_differential=True)).init()
    mh.make(tracks_from_arrays([0.1, 0.5, 1.0, 2.0], is_poi=[True, False, False, False]))
    mh.make(tracks_from_arrays([0.1, 0.5], is_rp=False, is_poi=True))

    for prof in mh.three_p_correlator_vs_pt:
        assert prof.entries.sum() == 0
        assert np.all(prof.content == 0)


def test_unit_weights_equal_unweighted(random_events):
    plain = MixedHarmonics(quiet(evaluate_differential=True)).init()
    s = quiet(evaluate_differential=True, use_phi_weights=True,
              use_pt_weights=True, use_eta_weights=True)
    weighted = MixedHarmonics(s, unit_weights(s)).init()
    for ev in random_events:
        plain.make(ev)
        weighted.make(ev)

    a, b = plain.finish(), weighted.finish()
    assert b['measured'] == pytest.approx(a['measured'], abs=1e-12)
    assert b['corrected'] == pytest.approx(a['corrected'], abs=1e-12)
    np.testing.assert_allclose(b['non_isotropic_terms_vs_m'], a['non_isotropic_terms_vs_m'],
                               atol=1e-12)
    for sd in a['differential']:
        np.testing.assert_allclose(b['differential'][sd]['value'],
                                   a['differential'][sd]['value'], atol=1e-12)


# ── end of run ────────────────────────────────────────────────────────────────

def test_finish_applies_correction(random_events):
    mh = MixedHarmonics(quiet()).init()
    for ev in random_events:
        mh.make(ev)
    res = mh.finish()

    assert res['n_events'] == len(random_events)
    assert res['measured'] == pytest.approx(mh.three_p_correlator.content[0])
    assert res['bias'] == pytest.approx(res['corrected'] / res['measured'])
    assert len(res['mult_labels']) == len(res['measured_vs_m']) == 12

    filled = res['measured_vs_m'] != 0
    np.testing.assert_allclose(res['bias_vs_m'][filled],
                               res['corrected_vs_m'][filled] / res['measured_vs_m'][filled])
    assert np.all(res['bias_vs_m'][~filled] == 0)
    np.testing.assert_allclose(res['corrected_vs_m_err'], res['measured_vs_m_err'])


def test_finish_without_correction():
    mh = MixedHarmonics(quiet(correct_for_detector_effects=False)).init()
    mh.make(tracks_from_arrays([0.1, 1.0, 2.0, 3.0]))
    res = mh.finish()

    assert np.isnan(res['corrected'])
    assert np.all(np.isnan(res['bias_vs_m']))
    assert res['measured'] != 0


def test_print_on_the_screen(capsys):
    mh = MixedHarmonics(Settings(print_on_the_screen=True)).init()
    mh.make(tracks_from_arrays([0.1, 1.0, 2.0, 3.0]))
    mh.finish()

    out = capsys.readouterr().out
    assert 'Mixed Harmonics' in out
    assert 'Detector Bias' in out
    assert 'nEvts = 1' in out


# ── merging ───────────────────────────────────────────────────────────────────

def test_merge_equals_full_run(random_events):
    s = quiet(evaluate_differential=True)
    full = MixedHarmonics(s).init()
    a, b = MixedHarmonics(s).init(), MixedHarmonics(s).init()
    for i, ev in enumerate(random_events):
        full.make(ev)
        (a if i < 12 else b).make(ev)

    res_full = full.finish()
    res = a.merge(b).finish()

    assert res['n_events'] == res_full['n_events']
    assert res['corrected'] == pytest.approx(res_full['corrected'], abs=1e-12)
    np.testing.assert_allclose(res['corrected_vs_m'], res_full['corrected_vs_m'], atol=1e-12)
    np.testing.assert_allclose(res['differential']['PtSum']['value'],
                               res_full['differential']['PtSum']['value'], atol=1e-12)


def test_merge_rejects_different_settings():
    a = MixedHarmonics(quiet(harmonic=1)).init()
    b = MixedHarmonics(quiet(harmonic=2)).init()
    with pytest.raises(ValueError):
        a.merge(b)


def test_from_profiles_needs_all_profiles():
    s = quiet()
    profiles = MixedHarmonics(s).init().run_profiles()
    del profiles['non_isotropic_terms']
    with pytest.raises(KeyError):
        MixedHarmonics.from_profiles(s, profiles)


def test_weighted_differential_matches_pair_loop():
    s = quiet(evaluate_differential=True, use_phi_weights=True)
    content = 1.0 + 0.5 * np.sin(np.arange(s.n_bins_phi) * 0.3)
    weights = {'phi_weights': {'content': content,
                               'edges':   np.linspace(0, 2 * np.pi, s.n_bins_phi + 1)}}
    mh = MixedHarmonics(s, weights).init()

    phi    = np.array([0.2, 1.1, 2.3, 3.9, 5.0, 0.7, 4.4, 2.9])
    is_rp  = np.array([True, True, True, True, True, False, False, True])
    is_poi = np.array([False, False, False, True, False, True, True, True])
    ev = tracks_from_arrays(phi, pt=1.05, is_rp=is_rp, is_poi=is_poi)
    w  = an.particle_weights(ev, s, weights)
    assert np.ptp(w) > 0
    mh.make(ev)

    num = den = 0.0
    pois, rps = np.nonzero(is_poi)[0], np.nonzero(is_rp)[0]
    for i, j in itertools.permutations(pois, 2):
        for k in rps:
            if k in (i, j):
                continue
            num += w[k] * np.cos(phi[i] + phi[j] - 2 * phi[k])
            den += w[k]

    for prof in mh.three_p_correlator_vs_pt:
        filled = np.nonzero(prof.entries)[0]
        assert len(filled) == 1
        assert prof.entries[filled[0]] == pytest.approx(den)
        assert prof.content[filled[0]] == pytest.approx(num / den, abs=1e-12)


def test_failed_event_leaves_instance_usable():
    mh = MixedHarmonics(quiet(evaluate_differential=True)).init()
    # no 'pt' field: the pair loop fails after the RPs were accumulated
    broken = np.zeros(4, dtype=[('phi', np.float64), ('eta', np.float64),
                                ('charge', np.int32), ('is_rp', np.bool_),
                                ('is_poi', np.bool_)])
    broken['phi'] = [0.1, 0.9, 2.0, 4.0]
    broken['is_rp'] = True
    broken['is_poi'] = True
    with pytest.raises(ValueError):
        mh.make(broken)

    assert mh.state == an.IDLE
    assert np.all(mh.flow_vectors.Q == 0)
    assert mh.multiplicity_rp.entries[0] == 0

    ev = tracks_from_arrays([0.1, 0.9, 2.0, 4.0], pt=[0.5, 1.0, 1.5, 2.0], is_poi=True)
    fresh = MixedHarmonics(quiet(evaluate_differential=True)).init()
    mh.make(ev)
    fresh.make(ev)
    np.testing.assert_allclose(mh.three_p_correlator.content, fresh.three_p_correlator.content)
    np.testing.assert_allclose(mh.three_p_correlator_vs_pt[0].sum_wy,
                               fresh.three_p_correlator_vs_pt[0].sum_wy)


def test_from_profiles_without_weights_tables():
    s = quiet(use_phi_weights=True)
    weights = {'phi_weights': {'content': np.linspace(0.5, 1.5, s.n_bins_phi),
                               'edges':   np.linspace(0, 2 * np.pi, s.n_bins_phi + 1)}}
    mh = MixedHarmonics(s, weights).init()
    mh.make(tracks_from_arrays([0.1, 0.9, 2.0, 4.0]))

    rebuilt = MixedHarmonics.from_profiles(s, mh.run_profiles())
    assert rebuilt.finish()['measured'] == pytest.approx(mh.finish()['measured'])

    with pytest.raises(KeyError):
        MixedHarmonics(s).init()
