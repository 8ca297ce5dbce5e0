"""Response cache: request fingerprinting, TTL enforcement, pluggable stores."""
