"""Utility modules for pveup."""
