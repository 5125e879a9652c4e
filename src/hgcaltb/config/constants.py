# src/hgcaltb/config/constants.py
"""
Fixed constants of the HGCAL test-beam instrument (October 2018 setup).

Energies are in MeV. Noise sigmas and thresholds are in MIP units, i.e.
they apply after the raw cell energy has been divided by the MIP value of
the sensitive material.
"""
from __future__ import annotations

# Layer counts
CEE_LAYERS = 28
CHE_LAYERS = 12
AHCAL_LAYERS = 39

# Cells per layer (one silicon wafer has 133 cells)
CEE_CELLS = 133
CHE_CELLS = 7 * CEE_CELLS
AHCAL_CELLS = 24 * 24

# CHE layers from this index on are instrumented with a single wafer
CHE_SEVEN_WAFER_LAYERS = 9

# MIP calibration [MeV]
MIP_SILICON = 0.0850
MIP_TILE = 0.4755

# Electronic noise [MIP]
CEE_NOISE_SIGMA = 1.0 / 6.0
AHCAL_NOISE_SIGMA = 0.12

# Single-cell zero-suppression [MIP]
CEE_THRESHOLD = 0.5
AHCAL_THRESHOLD = 0.5

# Sensitive-detector hit collection names
CEE_COLLECTION = "CEEHitsCollection"
CHE_COLLECTION = "CHEHitsCollection"
AHCAL_COLLECTION = "AHCALHitsCollection"

# Output ntuple columns, in fill order
NTUPLE_COLUMNS = ("edep", "CEETot", "CHETot", "AHCALTot", "HGCALTot", "IntLayer")
