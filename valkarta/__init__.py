"""
Regional party popularity maps from Swedish election results.
"""

__version__ = "0.1.0"
