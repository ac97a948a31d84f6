"""
Uniform random sources for the photon tracer.

Every consumer draws through the :class:`RandomSource` contract, so the
strategy deciding where draws come from (one shared seeded generator, one
generator per task or one per worker thread) is chosen by the caller instead
of living inside the tracer.
"""

from __future__ import annotations

import threading
from typing import Protocol

import numpy as np
import torch

from .config import RandomMode
from .exceptions import ContrailConfigError


class RandomSource(Protocol):
    def uniform(self, n: int) -> torch.Tensor:
        """Return ``n`` float64 draws from U[0, 1)."""


class TorchRandomSource:
    """Draws from a dedicated ``torch.Generator``."""

    def __init__(self, seed: int | None = None, device: torch.device | None = None) -> None:
        self.device = torch.device("cpu") if device is None else device
        self.generator = torch.Generator(device=self.device)
        if seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(seed)

    def uniform(self, n: int) -> torch.Tensor:
        return torch.rand(n, generator=self.generator, dtype=torch.float64, device=self.device)


class LockedRandomSource:
    """Serialises access to a source shared between threads."""

    def __init__(self, source: RandomSource) -> None:
        self._source = source
        self._lock = threading.Lock()

    def uniform(self, n: int) -> torch.Tensor:
        with self._lock:
            return self._source.uniform(n)


class ThreadLocalRandomSource:
    """Lazily creates one unseeded generator per calling thread."""

    def __init__(self, device: torch.device | None = None) -> None:
        self.device = device
        self._local = threading.local()

    def uniform(self, n: int) -> torch.Tensor:
        source = getattr(self._local, "source", None)
        if source is None:
            source = TorchRandomSource(None, self.device)
            self._local.source = source
        return source.uniform(n)


def derive_seed(seed: int, index: int) -> int:
    """Independent 63-bit seed for task ``index`` of a run seeded with ``seed``."""
    state = np.random.SeedSequence(seed, spawn_key=(index,)).generate_state(1, dtype=np.uint64)
    return int(state[0]) & 0x7FFF_FFFF_FFFF_FFFF


class RandomStrategy:
    """
    Hands out the random source each DirectionTask should use.

    ``shared`` reproduces a single seeded stream and therefore runs tasks one
    at a time; ``per_task`` seeds every grid index separately and is
    reproducible for any worker count; ``thread_local`` is fastest and not
    reproducible.
    """

    def __init__(
        self, mode: RandomMode, seed: int | None = None, device: torch.device | None = None
    ) -> None:
        self.mode = mode
        self.seed = seed
        self.device = device
        self._shared: RandomSource | None = None
        self._thread_local: ThreadLocalRandomSource | None = None
        if mode is RandomMode.SHARED:
            self._shared = LockedRandomSource(TorchRandomSource(seed, device))
        elif mode is RandomMode.THREAD_LOCAL:
            self._thread_local = ThreadLocalRandomSource(device)
        elif seed is None:
            raise ContrailConfigError("per_task random mode requires a seed.")

    @property
    def serial(self) -> bool:
        return self.mode is RandomMode.SHARED

    def for_task(self, index: int) -> RandomSource:
        if self._shared is not None:
            return self._shared
        if self._thread_local is not None:
            return self._thread_local
        return TorchRandomSource(derive_seed(self.seed, index), self.device)


__all__ = [
    "RandomSource",
    "TorchRandomSource",
    "LockedRandomSource",
    "ThreadLocalRandomSource",
    "RandomStrategy",
    "derive_seed",
]
