"""
Provider Sync - Keep external identity and collaboration providers in sync with
a canonical directory of users and groups.

This package provides a uniform adapter contract plus per-provider convergence
logic for GitHub, Google Workspace, Okta and Ramp.
"""

__version__ = "1.0.0"
__author__ = "Provider Sync Team"
