"""
clpool Core Module

Core functionality for the pool engine including:
- DeFi primitives (math, ledgers, pool and factory)
- Error hierarchy
- Configuration and structured logging
"""

__all__ = []
