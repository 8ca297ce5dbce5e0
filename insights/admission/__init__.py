"""Admission control: burst window, daily cap, and tier bypass per client identifier."""

from __future__ import annotations

from insights.admission.controller import AdmissionController, run_periodic_sweep
from insights.admission.store import AdmissionStore, InMemoryAdmissionStore

__all__ = [
    "AdmissionController",
    "AdmissionStore",
    "InMemoryAdmissionStore",
    "run_periodic_sweep",
]
