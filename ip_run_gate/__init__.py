"""
IP Run Gate.

Deterministic daily quota and spacing gate for automated job launches
sharing a network address.
"""

__version__ = "0.1.0"
