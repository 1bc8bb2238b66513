"""
roomgrid - shared weekly time-grid coordination engine.
"""

__version__ = "0.1.0"
