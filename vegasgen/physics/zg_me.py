import os
import ctypes
import threading
import numpy as np
from pathlib import Path

from vegasgen.physics.zg_phase_space import MZ_DEFAULT


def mdot(a, b):
    """Minkowski product, metric (+,-,-,-)."""
    return a[0]*b[0] - a[1]*b[1] - a[2]*b[2] - a[3]*b[3]


def mandelstam_zg(p_all):
    """(s, t, u) for rows [p1, p2, pZ, pg]."""
    p1, p2, pZ = p_all[0], p_all[1], p_all[2]
    s = mdot(p1 + p2, p1 + p2)
    t = mdot(p1 - pZ, p1 - pZ)
    u = mdot(p2 - pZ, p2 - pZ)
    return s, t, u


def me2_lo(p_all: np.ndarray, mZ: float = MZ_DEFAULT, norm: float = 1.0) -> float:
    """
    Tree-level shape of q qbar -> Z g:
      |M|^2 = norm * (t^2 + u^2 + 2 s mZ^2) / (t u)
    Couplings and colour factors are folded into `norm`.
    Collinear points (t*u = 0) give inf; the caller flags them as invalid.
    """
    s, t, u = mandelstam_zg(np.asarray(p_all, dtype=np.float64))
    tu = t * u
    if tu == 0.0:
        return float("inf")
    return float(norm * (t*t + u*u + 2.0*s*mZ*mZ) / tu)


class AmplitudeContext:
    """
    Owns the MadGraph standalone |M|^2 library (ctypes).

    The library is loaded on first use, exactly once, under a lock; calls are
    serialized because the Fortran standalone code keeps global state.
    Paths default to the ZG_MG5_LIB / MG5_CARDS_DIR environment variables.
    """

    def __init__(self, lib_path=None, cards_dir=None):
        self.lib_path = lib_path if lib_path is not None else os.environ.get("ZG_MG5_LIB", "")
        self.cards_dir = cards_dir if cards_dir is not None else os.environ.get("MG5_CARDS_DIR", "")
        self._lib = None
        self._init_lock = threading.Lock()
        self._call_lock = threading.Lock()

    def _resolve_lib_path(self) -> Path:
        if not self.lib_path:
            raise FileNotFoundError(
                "ZG_MG5_LIB is not set.\n"
                "Set it to the full path of your MadGraph dylib, e.g.\n"
                "  export ZG_MG5_LIB=/.../libzgme_uux.dylib"
            )
        p = Path(self.lib_path).expanduser()
        if not p.exists():
            raise FileNotFoundError(f"ZG_MG5_LIB points to a non-existent file: {p}")
        return p

    def _ensure_cards_dir(self):
        # MadGraph lha_read searches for ident_card.dat relative to *cwd*.
        if not self.cards_dir:
            return
        cpath = Path(self.cards_dir).expanduser()
        if not cpath.exists():
            raise FileNotFoundError(f"MG5_CARDS_DIR does not exist: {cpath}")
        os.chdir(str(cpath))

    def load(self):
        if self._lib is not None:
            return self._lib
        with self._init_lock:
            if self._lib is None:
                self._ensure_cards_dir()
                lib = ctypes.CDLL(str(self._resolve_lib_path()))
                lib.zg_msq.argtypes = [ctypes.POINTER(ctypes.c_double)]
                lib.zg_msq.restype = ctypes.c_double
                self._lib = lib
        return self._lib

    @property
    def loaded(self) -> bool:
        return self._lib is not None

    def me2(self, p_all: np.ndarray) -> float:
        """
        p_all shape (4,4): rows [p1, p2, pZ, pg], cols [E,px,py,pz]
        Non-finite values are returned as-is; the integrand flags them.
        """
        lib = self.load()
        p = np.ascontiguousarray(p_all, dtype=np.float64).reshape(-1)  # length 16
        with self._call_lock:
            return float(lib.zg_msq(p.ctypes.data_as(ctypes.POINTER(ctypes.c_double))))

    __call__ = me2
