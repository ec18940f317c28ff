"""Domain models, ports and pure helpers. No I/O."""
