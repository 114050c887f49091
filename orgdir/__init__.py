"""
Organizational directory with hierarchical access control.
"""

__version__ = "1.0.0"
