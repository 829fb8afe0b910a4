"""
GoPilot Dismissal

Real-time school dismissal queue: check-in, calls, release and pickup.
"""

__version__ = "0.1.0"
