"""Kernel services: the imperative shell around the pure domain."""
