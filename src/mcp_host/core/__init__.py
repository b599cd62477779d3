"""Host-wide infrastructure: configuration, logging, registries and the session."""
