"""
pveup - Proxmox VE major upgrade orchestrator

A CLI tool that upgrades a Proxmox VE host from 8.x to 9.x through ordered,
guarded, re-runnable steps.
"""

__version__ = "0.3.0"

# Re-export core models for convenience
from pveup.core.config.models import PveupConfig
from pveup.core.models import StepOutcome, Version

__all__ = ["PveupConfig", "StepOutcome", "Version", "__version__"]
