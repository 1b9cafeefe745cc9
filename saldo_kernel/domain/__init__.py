"""Pure domain values, lifecycles, events and collaborator contracts. ZERO I/O beyond logging."""
