"""CompleteARR core - placement reconciliation for Sonarr and Radarr libraries."""

__version__ = "1.0.0"
