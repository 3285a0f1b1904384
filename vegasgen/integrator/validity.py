# vegasgen/integrator/validity.py
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np


@dataclass
class ValidityRecord:
    """
    Per-sample gates + the grid weight of the current draw.
    Created fresh for every draw, dropped after accumulation.
    """
    kinematics_ok: bool = True
    fidcuts_ok: bool = True
    vetocuts_ok: bool = True
    amplitude_ok: bool = True
    vegasweight: float = 1.0
    payload: Any = None
    rng: Optional[np.random.Generator] = None  # chunk-private stream

    def valid(self) -> bool:
        return self.kinematics_ok and self.fidcuts_ok and self.vetocuts_ok and self.amplitude_ok


class Integrand(ABC):
    """
    Black-box weight on the unit hypercube.

    evaluate() must return a weight >= 0 (0 for an invalid point) and flag
    non-finite amplitudes through validity.amplitude_ok instead of returning
    NaN/Inf. It is called concurrently from worker threads.
    """
    dim: int

    @abstractmethod
    def evaluate(self, point: np.ndarray, validity: ValidityRecord) -> float:
        ...


class FunctionIntegrand(Integrand):
    """Wrap a plain f(point) -> float."""

    def __init__(self, func: Callable[[np.ndarray], float], dim: int):
        self.func = func
        self.dim = int(dim)

    def evaluate(self, point, validity):
        w = float(self.func(point))
        if not np.isfinite(w):
            validity.amplitude_ok = False
            return 0.0
        return w


class PhysicsIntegrand(Integrand):
    """
    builder -> cuts -> amplitude, the way a physics process computes its weight.

      builder(point)     -> (ok, payload)   kinematics, may fail softly
      fiducial(payload)  -> bool
      veto(payload)      -> bool            True = event survives the veto
      amplitude(payload) -> float           |M|^2
      jacobian(payload)  -> float           phase-space factor (default 1)
    """

    def __init__(
        self,
        dim: int,
        builder: Callable,
        amplitude: Callable,
        fiducial: Optional[Callable] = None,
        veto: Optional[Callable] = None,
        jacobian: Optional[Callable] = None,
    ):
        self.dim = int(dim)
        self.builder = builder
        self.amplitude = amplitude
        self.fiducial = fiducial
        self.veto = veto
        self.jacobian = jacobian

    def evaluate(self, point, validity):
        ok, payload = self.builder(point)
        validity.kinematics_ok = bool(ok)
        if not ok:
            return 0.0
        validity.payload = payload

        validity.fidcuts_ok = True if self.fiducial is None else bool(self.fiducial(payload))
        validity.vetocuts_ok = True if self.veto is None else bool(self.veto(payload))
        if not validity.valid():
            return 0.0

        w = float(self.amplitude(payload))
        if self.jacobian is not None:
            w *= float(self.jacobian(payload))

        validity.amplitude_ok = bool(np.isfinite(w))
        if not validity.amplitude_ok:
            return 0.0
        return w
