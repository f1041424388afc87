"""
Random Sequence Provider - uniform draws and their normal / chi-squared
transforms, behind one interface for both sampling families.

Pseudo-random mode draws from numpy's Generator and builds normals with
Box-Muller, chi-squared variates as sums of squared normals. Quasi-random
mode walks a Sobol (or Halton) sequence from a caller-supplied offset and
maps every coordinate through an inverse CDF; Box-Muller is never used
there because pairing coordinates destroys the low-discrepancy structure.

Classes:
    SobolSequence      - primitive-polynomial direction numbers, 21 dims, Gray-code order
    HaltonSequence     - radical inverse in prime bases
    RandomSource       - interface: next(dims), block(count, dims), variates()
    PseudoRandomSource - numpy Generator + Box-Muller
    QuasiRandomSource  - Sobol/Halton points from skip + offset onward

Usage:
    src = QuasiRandomSource(offset=5_000)
    z, chi2 = src.variates(count=1_000, n=4, df=8)
"""

import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

NORMAL_P_MIN = 1e-5
NORMAL_P_MAX = 0.99999
NORMAL_Z_BOUND = 6.0
CHI2_FLOOR = 0.01
CHI2_U_EPS = 1e-10
DEFAULT_QMC_SKIP = 1023

# Acklam rational approximation coefficients.
_A = (-3.969683028665376e+01, 2.209460984245205e+02, -2.759285104469687e+02,
      1.383577518672690e+02, -3.066479806614716e+01, 2.506628277459239e+00)
_B = (-5.447609879822406e+01, 1.615858368580409e+02, -1.556989798598866e+02,
      6.680131188771972e+01, -1.328068155288572e+01)
_C = (-7.784894002430293e-03, -3.223964580411365e-01, -2.400758277161838e+00,
      -2.549732539343734e+00, 4.374664141464968e+00, 2.938163982698783e+00)
_D = (7.784695709041462e-03, 3.224671290700398e-01, 2.445134137142996e+00,
      3.754408661907416e+00)
_P_LOW = 0.02425
_P_HIGH = 1 - _P_LOW


# ── Inverse CDFs ────────────────────────────────────────────────────────

def _tail(q):
    num = ((((_C[0] * q + _C[1]) * q + _C[2]) * q + _C[3]) * q + _C[4]) * q + _C[5]
    den = (((_D[0] * q + _D[1]) * q + _D[2]) * q + _D[3]) * q + 1
    return num / den


def inverse_normal_cdf(p):
    """
    Standard normal quantile (Acklam), vectorized.

    p is clamped to [1e-5, 0.99999] and the result to [-6, 6].
    Scalars in, float out; arrays in, ndarray out.
    """
    scalar = np.ndim(p) == 0
    arr = np.clip(np.atleast_1d(np.asarray(p, dtype=np.float64)), NORMAL_P_MIN, NORMAL_P_MAX)
    arr = np.where(np.isfinite(arr), arr, 0.5)
    z = np.empty_like(arr)

    low = arr < _P_LOW
    high = arr > _P_HIGH
    mid = ~(low | high)

    if np.any(low):
        z[low] = _tail(np.sqrt(-2 * np.log(arr[low])))
    if np.any(high):
        z[high] = -_tail(np.sqrt(-2 * np.log(1 - arr[high])))
    if np.any(mid):
        q = arr[mid] - 0.5
        r = q * q
        num = (((((_A[0] * r + _A[1]) * r + _A[2]) * r + _A[3]) * r + _A[4]) * r + _A[5]) * q
        den = ((((_B[0] * r + _B[1]) * r + _B[2]) * r + _B[3]) * r + _B[4]) * r + 1
        z[mid] = num / den

    z = np.clip(z, -NORMAL_Z_BOUND, NORMAL_Z_BOUND)
    return float(z[0]) if scalar else z


def inverse_chi_squared_cdf(u, df):
    """
    Chi-squared quantile via the Wilson-Hilferty cube-root approximation.

    X = df * (1 - h + sqrt(h) * z)^3 with h = 2 / (9 df), z = Phi^-1(u).
    Where the cube-root term is not positive (far left tail) the value
    falls back to df * u^(2/df). Floored at 0.01.
    """
    scalar = np.ndim(u) == 0
    arr = np.clip(np.atleast_1d(np.asarray(u, dtype=np.float64)), CHI2_U_EPS, 1 - CHI2_U_EPS)
    h = 2.0 / (9.0 * df)
    cube = 1 - h + math.sqrt(h) * inverse_normal_cdf(arr)
    x = np.where(cube > 0, df * np.maximum(cube, 0.0) ** 3, df * arr ** (2.0 / df))
    x = np.maximum(x, CHI2_FLOOR)
    return float(x[0]) if scalar else x


# ── Sobol ───────────────────────────────────────────────────────────────

# (degree s, polynomial a, initial direction numbers m); dimension 1 is
# the van der Corput sequence and needs no entry.
SOBOL_DIRECTION_NUMBERS = (
    None,
    (2, 1, (1, 1)),
    (3, 1, (1, 3, 1)),
    (3, 2, (1, 1, 1)),
    (4, 1, (1, 1, 3, 3)),
    (4, 4, (1, 3, 5, 13)),
    (5, 2, (1, 1, 5, 5, 17)),
    (5, 4, (1, 1, 5, 5, 5)),
    (5, 7, (1, 1, 7, 11, 19)),
    (5, 11, (1, 1, 5, 1, 1)),
    (5, 13, (1, 1, 1, 3, 11)),
    (5, 14, (1, 3, 5, 5, 31)),
    (6, 1, (1, 3, 3, 9, 7, 49)),
    (6, 13, (1, 1, 1, 15, 21, 21)),
    (6, 16, (1, 3, 1, 13, 27, 49)),
    (6, 19, (1, 1, 1, 15, 7, 5)),
    (6, 22, (1, 3, 1, 3, 29, 31)),
    (6, 25, (1, 1, 5, 5, 21, 11)),
    (7, 1, (1, 3, 5, 15, 17, 63, 13)),
    (7, 4, (1, 1, 5, 5, 1, 27, 33)),
    (7, 7, (1, 3, 3, 3, 25, 17, 115)),
)
SOBOL_MAX_DIMENSIONS = len(SOBOL_DIRECTION_NUMBERS)
SOBOL_BITS = 30


def _rightmost_zero_bit(c):
    """1-based position of the lowest zero bit of c."""
    pos = 1
    while c & 1:
        c >>= 1
        pos += 1
    return pos


class SobolSequence:
    """
    Sobol low-discrepancy points in [0, 1)^dimensions.

    Point k is the XOR of the direction numbers selected by the bits of
    gray(k) = k ^ (k >> 1), which lets next() advance in O(dims) and
    points() jump anywhere without replaying the prefix. Point 0 is
    returned as 0.5 / 2^30 instead of the exact origin.
    """

    def __init__(self, dimensions, skip=0):
        if not 1 <= dimensions <= SOBOL_MAX_DIMENSIONS:
            raise ValueError(
                f"Sobol sequence supports 1-{SOBOL_MAX_DIMENSIONS} dimensions, got {dimensions}")
        self.dimensions = dimensions
        self.scale = float(1 << SOBOL_BITS)
        self.V = self._direction_numbers(dimensions)
        self.reset()
        if skip:
            self.skip_to(skip)

    @staticmethod
    def _direction_numbers(dimensions):
        V = np.zeros((dimensions, SOBOL_BITS + 1), dtype=np.uint64)
        for k in range(1, SOBOL_BITS + 1):
            V[0, k] = 1 << (SOBOL_BITS - k)
        for j in range(1, dimensions):
            s, a, m = SOBOL_DIRECTION_NUMBERS[j]
            v = [0] * (SOBOL_BITS + 1)
            for k in range(1, s + 1):
                v[k] = m[k - 1] << (SOBOL_BITS - k)
            for k in range(s + 1, SOBOL_BITS + 1):
                v[k] = v[k - s] ^ (v[k - s] >> s)
                for i in range(1, s):
                    if (a >> (s - 1 - i)) & 1:
                        v[k] ^= v[k - i]
            V[j] = v
        return V

    def reset(self):
        self.count = 0
        self._x = np.zeros(self.dimensions, dtype=np.uint64)

    def skip_to(self, index):
        """Position the sequence so the next point returned is point `index`."""
        self.count = int(index)
        if index <= 0:
            self._x = np.zeros(self.dimensions, dtype=np.uint64)
        else:
            self._x = self._integer_points(np.array([index - 1], dtype=np.uint64))[0]

    def _to_unit(self, x, indices):
        pts = x.astype(np.float64) / self.scale
        pts[indices == 0] = 0.5 / self.scale
        return pts

    def next(self):
        c = self.count
        if c == 0:
            self._x = np.zeros(self.dimensions, dtype=np.uint64)
            point = np.full(self.dimensions, 0.5 / self.scale)
        else:
            self._x = self._x ^ self.V[:, _rightmost_zero_bit(c - 1)]
            point = self._x.astype(np.float64) / self.scale
        self.count += 1
        return point

    def _integer_points(self, indices):
        gray = indices ^ (indices >> np.uint64(1))
        X = np.zeros((len(indices), self.dimensions), dtype=np.uint64)
        for k in range(1, SOBOL_BITS + 1):
            bit = ((gray >> np.uint64(k - 1)) & np.uint64(1)).astype(bool)
            if not bit.any():
                continue
            X[bit] ^= self.V[:, k]
        return X

    def points(self, start, count):
        """Points start .. start+count-1 as an array [count, dimensions]."""
        indices = np.arange(start, start + count, dtype=np.uint64)
        return self._to_unit(self._integer_points(indices), indices)

    def generate(self, n):
        pts = self.points(self.count, n)
        self.skip_to(self.count + n)
        return pts


# ── Halton ──────────────────────────────────────────────────────────────

def _first_primes(n):
    primes = []
    candidate = 2
    while len(primes) < n:
        if all(candidate % p for p in primes if p * p <= candidate):
            primes.append(candidate)
        candidate += 1
    return primes


def halton_value(index, base):
    """Radical inverse of index in the given base."""
    result = 0.0
    f = 1.0 / base
    i = int(index)
    while i > 0:
        result += f * (i % base)
        i //= base
        f /= base
    return result


class HaltonSequence:
    """Halton points; dimension j uses the j-th prime as its base."""

    def __init__(self, dimensions, skip=0):
        if dimensions < 1:
            raise ValueError(f"Halton sequence needs at least 1 dimension, got {dimensions}")
        self.dimensions = dimensions
        self.bases = _first_primes(dimensions)
        self.index = int(skip)

    def reset(self):
        self.index = 0

    def skip_to(self, index):
        self.index = int(index)

    def next(self):
        point = np.array([halton_value(self.index, b) for b in self.bases])
        self.index += 1
        return point

    def points(self, start, count):
        idx = np.arange(start, start + count, dtype=np.int64)
        out = np.zeros((count, self.dimensions))
        for j, base in enumerate(self.bases):
            i = idx.copy()
            f = 1.0 / base
            while np.any(i > 0):
                out[:, j] += f * (i % base)
                i //= base
                f /= base
        return out

    def generate(self, n):
        pts = self.points(self.index, n)
        self.index += n
        return pts


# ── Sources ─────────────────────────────────────────────────────────────

class RandomSource:
    """
    What the scenario generator draws from.

    next(dims) returns one uniform point, block(count, dims) a batch of
    them. variates(count, n, df) returns n standard normals per row and,
    when df is given, one chi-squared(df) variate per row.
    """

    def next(self, dims):
        return self.block(1, dims)[0]

    def block(self, count, dims):
        raise NotImplementedError

    def variates(self, count, n, df=None):
        dims = n + 1 if df is not None else n
        u = self.block(count, dims)
        z = inverse_normal_cdf(u[:, :n])
        chi2 = inverse_chi_squared_cdf(u[:, n], df) if df is not None else None
        return z, chi2


class PseudoRandomSource(RandomSource):
    """Independent draws from numpy's default Generator."""

    def __init__(self, seed=None):
        self.rng = np.random.default_rng(seed)

    def block(self, count, dims):
        return self.rng.random((count, dims))

    def box_muller(self, m):
        """m independent standard normals from ceil(m/2) Box-Muller pairs."""
        pairs = (m + 1) // 2
        u1 = 1.0 - self.rng.random(pairs)  # (0, 1]
        u2 = self.rng.random(pairs)
        r = np.sqrt(-2.0 * np.log(u1))
        theta = 2.0 * math.pi * u2
        return np.concatenate([r * np.cos(theta), r * np.sin(theta)])[:m]

    def chi_squared(self, count, df):
        """Sum of df squared normals per row, floored at 0.01."""
        df = int(round(df))
        if df > 100:
            x = df + math.sqrt(2.0 * df) * self.box_muller(count)
            return np.maximum(x, CHI2_FLOOR)
        df = max(df, 1)
        z = self.box_muller(count * df).reshape(count, df)
        return np.maximum((z * z).sum(axis=1), CHI2_FLOOR)

    def variates(self, count, n, df=None):
        z = self.box_muller(count * n).reshape(count, n)
        chi2 = self.chi_squared(count, df) if df is not None else None
        return z, chi2


class QuasiRandomSource(RandomSource):
    """
    Deterministic low-discrepancy source.

    Rows come from sequence indices skip + offset, skip + offset + 1, ...
    so two sources with disjoint [offset, offset + count) ranges never
    share a point. Sobol is limited to 21 dimensions; wider requests fall
    back to Halton with a warning.
    """

    def __init__(self, offset=0, sequence="sobol", skip=DEFAULT_QMC_SKIP):
        self.sequence = sequence
        self.skip = int(skip)
        self.offset = int(offset)
        self.position = self.skip + self.offset
        self._generators = {}

    def _generator(self, dims):
        gen = self._generators.get(dims)
        if gen is None:
            if self.sequence == "sobol" and dims <= SOBOL_MAX_DIMENSIONS:
                gen = SobolSequence(dims)
            else:
                if self.sequence == "sobol":
                    logger.warning(f"Sobol supports {SOBOL_MAX_DIMENSIONS} dimensions, "
                                   f"{dims} requested; using Halton")
                gen = HaltonSequence(dims)
            self._generators[dims] = gen
        return gen

    def block(self, count, dims):
        pts = self._generator(dims).points(self.position, count)
        self.position += count
        return pts


# ── Diagnostics ─────────────────────────────────────────────────────────

def estimate_star_discrepancy(points, n_corners=1000, seed=None):
    """
    Rough star-discrepancy estimate: max |fraction inside [0, c) - vol(c)|
    over random anchored boxes c. Exact computation is NP-hard.
    """
    pts = np.asarray(points, dtype=np.float64)
    n, d = pts.shape
    rng = np.random.default_rng(seed)
    worst = 0.0
    for corner in rng.random((n_corners, d)):
        inside = np.all(pts < corner, axis=1).sum()
        worst = max(worst, abs(inside / n - float(np.prod(corner))))
    return worst
