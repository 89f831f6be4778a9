"""Fleet Relay: credential-injecting relay for the Fleet Management API."""

__version__ = "1.0.0"
