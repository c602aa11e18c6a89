"""Waste-collection marketplace core: material lifecycle, fleet simulation, notifications."""
