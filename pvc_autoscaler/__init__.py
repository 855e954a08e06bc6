"""Automatic capacity growth for Kubernetes PersistentVolumeClaims."""

__version__ = "0.1.0"
