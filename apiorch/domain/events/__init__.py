"""Domain Event definitions.

Represents significant occurrences within the orchestrator that other parts
of the system (logging, monitoring) might react to.
"""
