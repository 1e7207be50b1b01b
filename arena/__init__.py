"""
Arena: tournament lifecycle and registration consistency engine.
"""
__version__ = "1.0.0"
