"""Provision an EKS cluster, ship the app image and roll it out."""

__version__ = "0.1.0"
