import numpy as np
# Running weighted averages, the numpy stand-in for a ROOT TProfile.


class Profile:
    """
    Fixed-shape table of running weighted averages.

    Each cell keeps sum_w, sum_wy, sum_wy2 and sum_w2, so that

        content = sum_wy / sum_w
        error   = spread / sqrt(N_eff),   N_eff = sum_w**2 / sum_w2

    which is the default error definition of a ROOT TProfile. Cells are
    addressed by an index (int or tuple) into the table. Because every
    cell is a weighted mean, two profiles booked with the same shape are
    merged exactly by adding their sums.

    Optional bin edges turn the first axis into a histogram axis so that
    fill_x() can locate the cell from a coordinate.
    """

    def __init__(self, name, shape, edges=None, title=''):
        self.name  = name
        self.title = title
        self.shape = (shape,) if np.isscalar(shape) else tuple(shape)
        self.edges = None if edges is None else np.asarray(edges, dtype=float)

        if self.edges is not None and len(self.edges) != self.shape[0] + 1:
            raise ValueError(f"{name}: {len(self.edges)} edges do not match "
                             f"{self.shape[0]} bins")

        self.sum_w   = np.zeros(self.shape)
        self.sum_wy  = np.zeros(self.shape)
        self.sum_wy2 = np.zeros(self.shape)
        self.sum_w2  = np.zeros(self.shape)

    # ── filling ──────────────────────────────────────────────────────────────
    def fill(self, index, y, w=1.0):
        self.sum_w  [index] += w
        self.sum_wy [index] += w * y
        self.sum_wy2[index] += w * y * y
        self.sum_w2 [index] += w * w

    def find_bin(self, x):
        """Index of the bin holding x on the first axis, None if outside."""
        if self.edges is None:
            raise ValueError(f"{self.name}: profile has no bin edges")
        if not (self.edges[0] <= x < self.edges[-1]):
            return None
        return int(np.searchsorted(self.edges, x, side='right')) - 1

    def fill_x(self, x, y, w=1.0):
        ib = self.find_bin(x)
        if ib is not None:
            self.fill(ib, y, w)
        return ib

    def fill_x_many(self, x, y, w=None):
        """Vectorised fill_x(); entries outside the axis range are dropped."""
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        w = np.ones_like(x) if w is None else np.broadcast_to(np.asarray(w, dtype=float), x.shape)
        if self.edges is None:
            raise ValueError(f"{self.name}: profile has no bin edges")

        ok = (x >= self.edges[0]) & (x < self.edges[-1])
        ib = np.searchsorted(self.edges, x[ok], side='right') - 1
        y, w = y[ok], w[ok]

        np.add.at(self.sum_w,   ib, w)
        np.add.at(self.sum_wy,  ib, w * y)
        np.add.at(self.sum_wy2, ib, w * y * y)
        np.add.at(self.sum_w2,  ib, w * w)

    def reset(self):
        for arr in (self.sum_w, self.sum_wy, self.sum_wy2, self.sum_w2):
            arr.fill(0.0)

    def merge(self, other):
        if other.shape != self.shape:
            raise ValueError(f"Cannot merge {other.name} {other.shape} "
                             f"into {self.name} {self.shape}")
        self.sum_w   += other.sum_w
        self.sum_wy  += other.sum_wy
        self.sum_wy2 += other.sum_wy2
        self.sum_w2  += other.sum_w2
        return self

    def copy(self):
        out = Profile(self.name, self.shape, self.edges, self.title)
        return out.merge(self)

    # ── reading ──────────────────────────────────────────────────────────────
    @property
    def entries(self):
        return self.sum_w

    @property
    def content(self):
        with np.errstate(divide='ignore', invalid='ignore'):
            return np.where(self.sum_w != 0, self.sum_wy / self.sum_w, 0.0)

    @property
    def error(self):
        with np.errstate(divide='ignore', invalid='ignore'):
            mean   = self.content
            spread = np.where(self.sum_w != 0, self.sum_wy2 / self.sum_w - mean**2, 0.0)
            spread = np.sqrt(np.clip(spread, 0.0, None))
            n_eff  = np.where(self.sum_w2 > 0, self.sum_w**2 / self.sum_w2, 0.0)
            return np.where(n_eff > 0, spread / np.sqrt(n_eff), 0.0)

    @property
    def centers(self):
        if self.edges is None:
            return None
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    def to_dict(self):
        d = {
            'sum_w':   self.sum_w,
            'sum_wy':  self.sum_wy,
            'sum_wy2': self.sum_wy2,
            'sum_w2':  self.sum_w2,
        }
        if self.edges is not None:
            d['edges'] = self.edges
        return d

    @classmethod
    def from_dict(cls, name, d, title=''):
        prof = cls(name, np.shape(d['sum_w']), d.get('edges'), title)
        prof.sum_w[...]   = d['sum_w']
        prof.sum_wy[...]  = d['sum_wy']
        prof.sum_wy2[...] = d['sum_wy2']
        prof.sum_w2[...]  = d['sum_w2']
        return prof

    def __repr__(self):
        return f"Profile({self.name!r}, shape={self.shape})"
