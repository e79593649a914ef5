"""fundwatch -- periodic funding rate sampler with bucketed history queries."""

__version__ = "0.1.0"
