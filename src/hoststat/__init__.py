"""hoststat - host and service telemetry agent.

Periodically samples operating-system and application counters, turns
cumulative counters into per-interval rates and persists the results.
"""

__version__ = "0.1.0"
