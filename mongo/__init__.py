"""MongoDB configuration and shared client."""
