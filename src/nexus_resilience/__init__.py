"""
Nexus AI Resilience

Circuit breaking, priority failover, rate limiting, response caching and
stream recovery for the MetaDJai chat assistant's upstream AI providers.
"""

__version__ = "1.0.0"
