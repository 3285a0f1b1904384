import math
import numpy as np

from vegasgen.integrator.validity import PhysicsIntegrand


# -----------------------------
# Stage 1: U -> raw massless 4-vectors
# -----------------------------
def raw_from_U(U):
    """
    U: shape (n,4) uniform in [0,1)
    returns p_raw: shape (n,4) with (E, px, py, pz), massless by construction.
    """
    U = np.asarray(U)
    n = U.shape[0]

    costh = 2 * U[:, 0] - 1
    sinth = np.sqrt(np.maximum(0.0, 1.0 - costh**2))
    phi   = 2 * np.pi * U[:, 1]

    # E distributed as E exp(-E)
    E = -np.log(U[:, 2] * U[:, 3])

    p = np.zeros((n, 4), dtype=np.float64)
    p[:, 0] = E
    p[:, 1] = E * sinth * np.cos(phi)
    p[:, 2] = E * sinth * np.sin(phi)
    p[:, 3] = E * costh
    return p


# -----------------------------
# Stage 2: boost to CM (sum spatial momentum -> 0)
# -----------------------------
def boost_to_cm(p):
    """
    Boost all 4-vectors so that the total 3-momentum is zero.
    """
    p = np.asarray(p, dtype=np.float64).copy()

    Q = p.sum(axis=0)
    Q0, Qx, Qy, Qz = Q

    # boost velocity beta = -Qvec / Q0
    beta = -np.array([Qx, Qy, Qz]) / Q0
    b2 = beta @ beta
    if b2 >= 1.0:
        raise RuntimeError(f"Unphysical boost: |beta|^2={b2} (should be < 1)")

    gamma = 1.0 / np.sqrt(1.0 - b2)
    gamma2 = (gamma - 1.0) / b2 if b2 > 0.0 else 0.0

    bp = p[:, 1:] @ beta
    E = p[:, 0].copy()
    p[:, 1:] += np.outer(gamma2 * bp + gamma * E, beta)
    p[:, 0] = gamma * (E + bp)
    return p


# -----------------------------
# Stage 3: rescale so sum(E) = Ecm
# -----------------------------
def rescale_to_Ecm(p, Ecm):
    p = np.asarray(p, dtype=np.float64).copy()
    sumE = p[:, 0].sum()
    if sumE <= 0:
        raise RuntimeError(f"Bad sumE={sumE}")
    return p * (Ecm / sumE)


def rambo_from_U(U, Ecm):
    """
    RAMBO map: U -> n massless final-state momenta.

    U : shape (n,4) in [0,1)
    Returns:
       p : shape (n,4)
    """
    return rescale_to_Ecm(boost_to_cm(raw_from_U(U)), Ecm)


def rambo_volume(n: int, Ecm: float) -> float:
    """
    Massless n-body phase-space volume (flat RAMBO weight),
      (2pi)^(4-3n) (pi/2)^(n-1) s^(n-2) / ((n-1)! (n-2)!)
    """
    if n < 2:
        raise ValueError("RAMBO needs n >= 2 final-state particles")
    s = Ecm * Ecm
    return (
        (2.0 * np.pi) ** (4 - 3 * n)
        * (np.pi / 2.0) ** (n - 1)
        * s ** (n - 2)
        / (math.factorial(n - 1) * math.factorial(n - 2))
    )


def beams(Ecm):
    p1 = np.array([Ecm/2, 0, 0, +Ecm/2], dtype=np.float64)
    p2 = np.array([Ecm/2, 0, 0, -Ecm/2], dtype=np.float64)
    return p1, p2


def rambo_builder(n: int, Ecm: float):
    """
    Kinematic builder for a flat point in [0,1)^(4n).
    Returns f(point) -> (ok, p_all) with p_all shape (n+2,4), beams first.
    A point with U3*U4 == 0 has infinite energy: (False, None).
    """
    p1, p2 = beams(Ecm)

    def build(point):
        U = np.asarray(point, dtype=np.float64).reshape(n, 4)
        if np.any(U[:, 2] * U[:, 3] <= 0.0):
            return False, None
        p_final = rambo_from_U(U, Ecm)
        if not np.all(np.isfinite(p_final)):
            return False, None
        return True, np.vstack([p1, p2, p_final])

    return build


class RamboIntegrand(PhysicsIntegrand):
    """
    n-body massless phase space x amplitude, dim = 4n.
    With the default amplitude (1) the integral is rambo_volume(n, Ecm).
    """

    def __init__(self, n: int, Ecm: float, amplitude=None, fiducial=None, veto=None):
        self.n = int(n)
        self.Ecm = float(Ecm)
        self.volume = rambo_volume(self.n, self.Ecm)
        super().__init__(
            dim=4 * self.n,
            builder=rambo_builder(self.n, self.Ecm),
            amplitude=amplitude if amplitude is not None else (lambda p_all: 1.0),
            fiducial=fiducial,
            veto=veto,
            jacobian=lambda p_all: self.volume,
        )


def conservation_report(p_final, Ecm):
    """
    p_final: shape (n,4) with (E, px, py, pz)
    Returns sumE - Ecm, |sum p| and max |m_i^2| (m_i^2 = E_i^2 - |p_i|^2).
    """
    p = np.asarray(p_final, dtype=np.float64)
    m2 = p[:, 0]**2 - (p[:, 1:]**2).sum(axis=1)
    return {
        "dE": float(p[:, 0].sum() - Ecm),
        "abs_sum_p": float(np.linalg.norm(p[:, 1:].sum(axis=0))),
        "max_abs_m2": float(np.max(np.abs(m2))),
    }


def random_rambo_event(rng, Ecm=1000.0, n=3):
    """
    Returns:
      p_all : (n+2,4)
      U     : (n,4)
    """
    U = rng.random((n, 4))
    ok, p_all = rambo_builder(n, Ecm)(U.reshape(-1))
    return (p_all if ok else None), U
