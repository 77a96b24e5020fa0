import numpy as np
# Default settings for the mixed-harmonics analysis. Everything here is only a
# default: the analysis itself reads its configuration from a Settings object.

# ── harmonic ──────────────────────────────────────────────────────────────────
# Correlator measured: cos[n(phi1+phi2-2phi3)] and cos[n(psi1+psi2-2phi3)].
# n=1: sensitive to v1 (and strong parity violation)
# n=2: sensitive to v4
HARMONIC = 1

# ── multiplicity binning ──────────────────────────────────────────────────────
# One underflow bin (M < MIN_MULT), N_MULT_BINS bins of width MULT_BIN_WIDTH,
# one overflow bin (M >= MIN_MULT + N_MULT_BINS*MULT_BIN_WIDTH).
N_MULT_BINS    = 10
MULT_BIN_WIDTH = 2
MIN_MULT       = 1

# ── phi, pT and eta binning (weights tables and differential correlator) ─────
N_PHI    = 72
PHI_MIN  = 0.0
PHI_MAX  = 2 * np.pi

N_PT     = 100                               # number of bins
PT_MIN   = 0.0                               # lower edge [GeV]
PT_MAX   = 10.0                              # upper edge [GeV]

N_ETA    = 80
ETA_MIN  = -2.0
ETA_MAX  = 2.0

# Track selection used when building flow events from momenta: [pT, eta] windows.
RP_CUTS  = {'pt': [0.2, 5.0], 'eta': [-0.8, 0.8]}
POI_CUTS = {'pt': [0.2, 10.0], 'eta': [-0.8, 0.8]}

# Tolerance on bin width when cross-checking weights tables against the binning.
BIN_WIDTH_TOLERANCE = 1e-6

FLAGS = {
    'opposite_charges_poi':         False,
    'evaluate_differential':        False,
    'correct_for_detector_effects': True,
    'print_on_the_screen':          True,
    'use_phi_weights':              False,
    'use_pt_weights':               False,
    'use_eta_weights':              False,
}


class Settings:
    """
    Configuration of one mixed-harmonics analysis instance.

    Passed explicitly to MixedHarmonics at construction. Binning of phi, pT
    and eta and the multiplicity binning live here, not in global state.
    """

    def __init__(self,
                 harmonic: int = HARMONIC,
                 n_multiplicity_bins: int = N_MULT_BINS,
                 multiplicity_bin_width: float = MULT_BIN_WIDTH,
                 min_multiplicity: float = MIN_MULT,
                 n_bins_phi: int = N_PHI,
                 n_bins_pt: int = N_PT,
                 pt_min: float = PT_MIN,
                 pt_max: float = PT_MAX,
                 n_bins_eta: int = N_ETA,
                 eta_min: float = ETA_MIN,
                 eta_max: float = ETA_MAX,
                 **flags):
        unknown = set(flags) - set(FLAGS)
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}. "
                             f"Available flags: {sorted(FLAGS)}")

        self.harmonic               = harmonic
        self.n_multiplicity_bins    = n_multiplicity_bins
        self.multiplicity_bin_width = multiplicity_bin_width
        self.min_multiplicity       = min_multiplicity
        self.n_bins_phi             = n_bins_phi
        self.n_bins_pt              = n_bins_pt
        self.pt_min                 = pt_min
        self.pt_max                 = pt_max
        self.n_bins_eta             = n_bins_eta
        self.eta_min                = eta_min
        self.eta_max                = eta_max

        for key, default in FLAGS.items():
            setattr(self, key, bool(flags.get(key, default)))

    @property
    def phi_bin_width(self):
        return (PHI_MAX - PHI_MIN) / self.n_bins_phi if self.n_bins_phi else 0.0

    @property
    def pt_bin_width(self):
        return (self.pt_max - self.pt_min) / self.n_bins_pt if self.n_bins_pt else 0.0

    @property
    def eta_bin_width(self):
        return (self.eta_max - self.eta_min) / self.n_bins_eta if self.n_bins_eta else 0.0

    @property
    def max_multiplicity(self):
        """Lower edge of the overflow multiplicity bin."""
        return (self.min_multiplicity
                + self.n_multiplicity_bins * self.multiplicity_bin_width)

    @property
    def use_particle_weights(self):
        return self.use_phi_weights or self.use_pt_weights or self.use_eta_weights

    def cross_check(self):
        """Raise ValueError if the settings cannot describe a valid analysis."""
        if int(self.harmonic) != self.harmonic or self.harmonic < 1:
            raise ValueError(f"harmonic must be a positive integer, got {self.harmonic}")
        if self.n_multiplicity_bins < 1:
            raise ValueError(f"n_multiplicity_bins must be >= 1, "
                             f"got {self.n_multiplicity_bins}")
        if self.multiplicity_bin_width <= 0:
            raise ValueError(f"multiplicity_bin_width must be > 0, "
                             f"got {self.multiplicity_bin_width}")
        if self.min_multiplicity < 0:
            raise ValueError(f"min_multiplicity must be >= 0, "
                             f"got {self.min_multiplicity}")
        if self.pt_max <= self.pt_min:
            raise ValueError(f"pt range [{self.pt_min}, {self.pt_max}] is empty")
        if self.eta_max <= self.eta_min:
            raise ValueError(f"eta range [{self.eta_min}, {self.eta_max}] is empty")
        for name in ('n_bins_phi', 'n_bins_pt', 'n_bins_eta'):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.evaluate_differential and self.n_bins_pt < 1:
            raise ValueError("evaluate_differential requires n_bins_pt >= 1")

    def as_dict(self):
        keys = ['harmonic', 'n_multiplicity_bins', 'multiplicity_bin_width',
                'min_multiplicity', 'n_bins_phi', 'n_bins_pt', 'pt_min',
                'pt_max', 'n_bins_eta', 'eta_min', 'eta_max'] + list(FLAGS)
        return {key: getattr(self, key) for key in keys}

    @classmethod
    def from_dict(cls, d):
        return cls(**{key: d[key] for key in cls().as_dict() if key in d})

    def __eq__(self, other):
        return isinstance(other, Settings) and self.as_dict() == other.as_dict()

    def __repr__(self):
        return f"Settings({self.as_dict()})"
