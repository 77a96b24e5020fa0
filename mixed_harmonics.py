"""
Azimuthal correlators in mixed harmonics, implemented in terms of Q-vectors.

The 3-particle correlator <<cos[n(phi1+phi2-2phi3)]>> and the reduced
correlator <<cos[n(psi1+psi2-2phi3)]>> are obtained from event-by-event
Q-vectors, so no nested loops over particle triplets are needed. Useful to:

    a) extract subdominant harmonics (v1, v4);
    b) study flow of two-particle resonances;
    c) study strong parity violation.

Per event:   fill Q_{n,k}, S_{p,k} (and POI pair profiles)
             -> 3-p correlator, non-isotropic terms, differential correlator
             -> reset
End of run:  correct the measured correlator for detector effects.
"""

import numpy as np

import analyser as an
import processer as pr
from parameters import Settings, BIN_WIDTH_TOLERANCE
from profiles import Profile


class MixedHarmonics:

    RUN_PROFILES = ('three_p_correlator', 'non_isotropic_terms',
                    'three_p_correlator_vs_m', 'non_isotropic_terms_vs_m',
                    'multiplicity_rp')

    def __init__(self, settings=None, weights=None):
        self.settings = settings if settings is not None else Settings()
        self.weights  = weights

        # event-by-event quantities
        self.flow_vectors = None
        self.pairs        = None

        # all-event quantities
        self.three_p_correlator       = None
        self.non_isotropic_terms      = None
        self.three_p_correlator_vs_m  = None
        self.non_isotropic_terms_vs_m = None
        self.three_p_correlator_vs_pt = None   # [PtSum, PtDiff], differential mode only
        self.multiplicity_rp          = None

        # final results
        self.three_p_correlator_hist      = None   # [corrected, error]
        self.detector_bias_hist           = None
        self.three_p_correlator_vs_m_hist = None   # [corrected, error] per multiplicity bin
        self.detector_bias_vs_m_hist      = None

        self.state = an.IDLE

    # ══════════════════════════════════════════════════════════════════════════
    # Booking
    # ══════════════════════════════════════════════════════════════════════════

    def init(self, check_weights=True):
        """
        Cross-check the settings and book all objects.

        check_weights=False skips the weights tables, for instances that only
        merge and finish persisted profiles and never call make().
        """
        self.settings.cross_check()
        self.book_all_event_by_event_quantities()
        self.book_all_all_event_quantities()
        self.book_final_results()
        if check_weights:
            self.book_and_check_weights()
        return self

    @property
    def n_mult_bins(self):
        return self.settings.n_multiplicity_bins + 2

    @property
    def pair_edges(self):
        return np.linspace(0.0, self.settings.pt_max, self.settings.n_bins_pt + 1)

    def book_all_event_by_event_quantities(self):
        self.flow_vectors = an.FlowVectors(self.settings.harmonic)
        if self.settings.evaluate_differential:
            self.pairs = an.PairProfiles(self.pair_edges)

    def book_all_all_event_quantities(self):
        n = self.settings.harmonic
        tag = '' if n == 1 else str(n)
        self.three_p_correlator = Profile(
            'three_p_correlator', 1, title=f'<<cos[{tag}(phi1+phi2-2phi3)]>>')
        self.non_isotropic_terms = Profile(
            'non_isotropic_terms', pr.N_NON_ISOTROPIC_TERMS,
            title=f'Non-isotropic terms in decomposition of <<cos[{tag}(phi1+phi2-2phi3)]>>')
        self.three_p_correlator_vs_m = Profile(
            'three_p_correlator_vs_m', self.n_mult_bins,
            title=f'<<cos[{tag}(phi1+phi2-2phi3)]>> vs M')
        self.non_isotropic_terms_vs_m = Profile(
            'non_isotropic_terms_vs_m', (pr.N_NON_ISOTROPIC_TERMS, self.n_mult_bins),
            title='Non-isotropic terms vs M')
        self.multiplicity_rp = Profile('multiplicity_rp', 1, title='<M> of RPs')

        if self.settings.evaluate_differential:
            self.three_p_correlator_vs_pt = [
                Profile(f'three_p_correlator_vs_{sd}', self.settings.n_bins_pt,
                        self.pair_edges,
                        title=f'<<cos[{tag}(psi1+psi2-2phi3)]>> vs {sd}')
                for sd in an.PAIR_VARIABLES]

    def book_final_results(self):
        self.three_p_correlator_hist      = np.zeros(2)
        self.detector_bias_hist           = np.zeros(1)
        self.three_p_correlator_vs_m_hist = np.zeros((2, self.n_mult_bins))
        self.detector_bias_vs_m_hist      = np.zeros(self.n_mult_bins)

    def book_and_check_weights(self):
        """
        Check that every enabled phi/pt/eta weights table is present and
        binned like the analysis.
        """
        s = self.settings
        for var, use, width in (('phi', s.use_phi_weights, s.phi_bin_width),
                                ('pt',  s.use_pt_weights,  s.pt_bin_width),
                                ('eta', s.use_eta_weights, s.eta_bin_width)):
            if not use:
                continue
            table = None if self.weights is None else self.weights.get(f'{var}_weights')
            if table is None:
                raise KeyError(f"'{var}_weights' is missing in book_and_check_weights() "
                               f"but use_{var}_weights is enabled")
            edges = np.asarray(table['edges'], dtype=float)
            if len(edges) != len(table['content']) + 1:
                raise ValueError(f"'{var}_weights' has {len(table['content'])} bins "
                                 f"but {len(edges)} edges")
            if abs((edges[1] - edges[0]) - width) > BIN_WIDTH_TOLERANCE:
                raise ValueError(f"Inconsistent binning in histograms for {var}-weights: "
                                 f"bin width {edges[1] - edges[0]:.6g}, expected {width:.6g}")

    # ══════════════════════════════════════════════════════════════════════════
    # Precondition checks
    # ══════════════════════════════════════════════════════════════════════════

    def _check_not_none(self, names, method):
        for name in names:
            obj = getattr(self, name)
            if obj is None or (isinstance(obj, list) and any(o is None for o in obj)):
                raise RuntimeError(f"{name} is None in {method}(); was init() called?")

    def check_objects_used_in_make(self):
        names = ['flow_vectors', 'three_p_correlator', 'non_isotropic_terms',
                 'three_p_correlator_vs_m', 'non_isotropic_terms_vs_m', 'multiplicity_rp']
        if self.settings.evaluate_differential:
            names += ['pairs', 'three_p_correlator_vs_pt']
        self._check_not_none(names, 'check_objects_used_in_make')

    def check_objects_used_in_finish(self):
        names = ['three_p_correlator', 'non_isotropic_terms', 'three_p_correlator_vs_m',
                 'non_isotropic_terms_vs_m', 'multiplicity_rp',
                 'three_p_correlator_hist', 'detector_bias_hist',
                 'three_p_correlator_vs_m_hist', 'detector_bias_vs_m_hist']
        if self.settings.evaluate_differential:
            names += ['three_p_correlator_vs_pt']
        self._check_not_none(names, 'check_objects_used_in_finish')

    # ══════════════════════════════════════════════════════════════════════════
    # Per event
    # ══════════════════════════════════════════════════════════════════════════

    def make(self, event):
        """
        Process one flow event: accumulate Q_{n,k} and S_{p,k}, compute the
        correlators, fill the all-event profiles, reset.
        """
        self.check_objects_used_in_make()
        if self.state != an.IDLE:
            raise RuntimeError(f"make() called while the previous event is {self.state}")

        self.state = an.ACCUMULATING
        try:
            an.fill_event(event, self.flow_vectors, self.settings,
                          weights=self.weights if self.settings.use_particle_weights else None,
                          pairs=self.pairs)

            self.state = an.REDUCING
            mult = self.flow_vectors.multiplicity
            self.multiplicity_rp.fill(0, mult)

            if mult >= 3:
                self.calculate_3p_correlator()
            self.calculate_non_isotropic_terms()
            if self.settings.evaluate_differential and mult >= 1:
                self.calculate_differential_3p_correlator()
        finally:
            # back to IDLE also when the event fails
            self.reset_event_by_event_quantities()

    def multiplicity_bin(self, mult):
        s = self.settings
        return pr.multiplicity_bin(mult, s.min_multiplicity,
                                   s.multiplicity_bin_width, s.n_multiplicity_bins)

    def calculate_3p_correlator(self):
        out = pr.three_particle_correlator(self.flow_vectors,
                                           self.settings.use_particle_weights)
        if out is None:
            return
        value, weight = out
        self.three_p_correlator.fill(0, value, weight)
        self.three_p_correlator_vs_m.fill(
            self.multiplicity_bin(self.flow_vectors.multiplicity), value, weight)

    def calculate_non_isotropic_terms(self):
        mbin = self.multiplicity_bin(self.flow_vectors.multiplicity)
        for term, value, weight in pr.non_isotropic_terms(
                self.flow_vectors, self.settings.use_particle_weights):
            self.non_isotropic_terms.fill(int(term), value, weight)
            self.non_isotropic_terms_vs_m.fill((int(term), mbin), value, weight)

    def calculate_differential_3p_correlator(self):
        per_variable = pr.differential_correlator(self.flow_vectors, self.pairs,
                                                  self.settings.use_particle_weights)
        for prof, (values, weights) in zip(self.three_p_correlator_vs_pt, per_variable):
            ok = np.nonzero(weights > 0.)[0]
            prof.fill(ok, values[ok], weights[ok])

    def reset_event_by_event_quantities(self):
        self.flow_vectors.reset()
        if self.pairs is not None:
            self.pairs.reset()
        self.state = an.IDLE

    # ══════════════════════════════════════════════════════════════════════════
    # End of run
    # ══════════════════════════════════════════════════════════════════════════

    def finish(self):
        """Correct for detector effects and (optionally) print the results."""
        self.check_objects_used_in_finish()
        if self.settings.correct_for_detector_effects:
            self.correct_for_detector_effects()
            self.correct_for_detector_effects_vs_m()
        if self.settings.print_on_the_screen:
            self.print_on_the_screen()
        return self.results()

    def correct_for_detector_effects(self):
        measured  = self.three_p_correlator.content[0]
        corrected = pr.correct_for_detector_effects(measured, self.non_isotropic_terms.content)

        self.three_p_correlator_hist[0] = corrected
        # TODO: propagate the errors of the non-isotropic terms as well
        self.three_p_correlator_hist[1] = self.three_p_correlator.error[0]
        if measured:
            self.detector_bias_hist[0] = pr.detector_bias(corrected, measured)

    def correct_for_detector_effects_vs_m(self):
        measured  = self.three_p_correlator_vs_m.content
        corrected = pr.correct_for_detector_effects(measured,
                                                    self.non_isotropic_terms_vs_m.content)

        self.three_p_correlator_vs_m_hist[0] = corrected
        self.three_p_correlator_vs_m_hist[1] = self.three_p_correlator_vs_m.error
        ok = measured != 0
        self.detector_bias_vs_m_hist[ok] = pr.detector_bias(corrected, measured)[ok]

    def results(self):
        """Final numbers as a plain dict (stored by analyser.save_hdf5)."""
        s = self.settings
        res = {
            'settings':               s.as_dict(),
            'n_events':               int(self.multiplicity_rp.sum_w[0]),
            'mean_multiplicity':      float(self.multiplicity_rp.content[0]),
            'measured':               float(self.three_p_correlator.content[0]),
            'measured_err':           float(self.three_p_correlator.error[0]),
            'non_isotropic_terms':    self.non_isotropic_terms.content.copy(),
            'non_isotropic_terms_err': self.non_isotropic_terms.error.copy(),
            'mult_labels':            pr.multiplicity_bin_labels(
                                          s.min_multiplicity, s.multiplicity_bin_width,
                                          s.n_multiplicity_bins),
            'measured_vs_m':          self.three_p_correlator_vs_m.content.copy(),
            'measured_vs_m_err':      self.three_p_correlator_vs_m.error.copy(),
            'non_isotropic_terms_vs_m': self.non_isotropic_terms_vs_m.content.copy(),
        }
        if s.correct_for_detector_effects:
            res.update({
                'corrected':          float(self.three_p_correlator_hist[0]),
                'corrected_err':      float(self.three_p_correlator_hist[1]),
                'bias':               float(self.detector_bias_hist[0]),
                'corrected_vs_m':     self.three_p_correlator_vs_m_hist[0].copy(),
                'corrected_vs_m_err': self.three_p_correlator_vs_m_hist[1].copy(),
                'bias_vs_m':          self.detector_bias_vs_m_hist.copy(),
            })
        else:
            nan_m = np.full(self.n_mult_bins, np.nan)
            res.update({
                'corrected': np.nan, 'corrected_err': np.nan, 'bias': np.nan,
                'corrected_vs_m': nan_m, 'corrected_vs_m_err': nan_m.copy(),
                'bias_vs_m': nan_m.copy(),
            })

        if s.evaluate_differential:
            res['differential'] = {
                sd: {
                    'pt_cents': prof.centers,
                    'value':    prof.content.copy(),
                    'err':      prof.error.copy(),
                    'entries':  prof.entries.copy(),
                }
                for sd, prof in zip(an.PAIR_VARIABLES, self.three_p_correlator_vs_pt)
            }
        return res

    def print_on_the_screen(self):
        n   = self.settings.harmonic
        lab = 'cos(phi1+phi2-2phi3)' if n == 1 else f'cos[{n}(phi1+phi2-2phi3)]'
        print()
        print("*" * 55)
        print("*" * 55)
        print("                    Mixed Harmonics")
        print()
        if self.settings.correct_for_detector_effects:
            print(f"  {lab} = {self.three_p_correlator_hist[0]:.6g} "
                  f"+/- {self.three_p_correlator_hist[1]:.6g}")
            print(f"  Detector Bias = {self.detector_bias_hist[0]:.6g}")
        else:
            print(f"  {lab} = {self.three_p_correlator.content[0]:.6g} "
                  f"+/- {self.three_p_correlator.error[0]:.6g}  (not corrected)")
        print()
        print(f"             nEvts = {int(self.multiplicity_rp.sum_w[0])}, "
              f"<M> = {self.multiplicity_rp.content[0]:.4g}")
        print("*" * 55)
        print("*" * 55)

    # ══════════════════════════════════════════════════════════════════════════
    # Merging of independent runs
    # ══════════════════════════════════════════════════════════════════════════

    def run_profiles(self):
        """All-event profiles by name: the state that is persisted and merged."""
        profiles = {name: getattr(self, name) for name in self.RUN_PROFILES}
        if self.settings.evaluate_differential:
            for sd, prof in zip(an.PAIR_VARIABLES, self.three_p_correlator_vs_pt):
                profiles[f'three_p_correlator_vs_{sd}'] = prof
        return profiles

    def merge(self, other):
        """Add the all-event profiles of another instance with equal settings."""
        if other.settings != self.settings:
            raise ValueError(f"Cannot merge analyses with different settings:\n"
                             f"  {self.settings}\n  {other.settings}")
        mine = self.run_profiles()
        for name, prof in other.run_profiles().items():
            mine[name].merge(prof)
        return self

    @classmethod
    def from_profiles(cls, settings, profiles, weights=None):
        """
        Rebuild an initialised instance from persisted all-event profiles.

        The weights tables are only checked when given: finish() does not
        read them.
        """
        mh = cls(settings, weights).init(check_weights=weights is not None)
        mine = mh.run_profiles()
        missing = set(mine) - set(profiles)
        if missing:
            raise KeyError(f"Missing profiles in from_profiles(): {sorted(missing)}")
        for name, prof in mine.items():
            prof.merge(profiles[name])
        return mh
