"""Self-hosted liveness beacon: authenticated heartbeats drive a public status."""

__version__ = "0.3.0"
