"""Transport adapters implementing the domain Transport interface."""
