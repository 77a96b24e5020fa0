import itertools

import numpy as np
import pytest

from kinematics import tracks_from_arrays


def brute_force_3p(phi, harmonic, w=None):
    """Weighted average of cos[n(phi_i+phi_j-2phi_k)] over distinct triplets."""
    w = np.ones(len(phi)) if w is None else w
    num = den = 0.0
    for i, j, k in itertools.permutations(range(len(phi)), 3):
        ww = w[i] * w[j] * w[k]
        num += ww * np.cos(harmonic * (phi[i] + phi[j] - 2 * phi[k]))
        den += ww
    return num / den


@pytest.fixture
def rng():
    return np.random.default_rng(12345)


@pytest.fixture
def random_events(rng):
    """Thirty flow events with 0..12 tracks, a v2-like modulation and mixed RP/POI flags."""
    events = []
    for _ in range(30):
        n   = rng.integers(0, 13)
        phi = rng.uniform(0, 2 * np.pi, n)
        phi = phi + 0.2 * np.sin(2 * phi)
        events.append(tracks_from_arrays(
            phi,
            pt=rng.uniform(0.2, 3.0, n),
            eta=rng.uniform(-0.8, 0.8, n),
            charge=rng.choice([-1, 1], n),
            is_rp=rng.random(n) < 0.8,
            is_poi=rng.random(n) < 0.5,
        ))
    return events
