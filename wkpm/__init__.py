"""
wkpm: module and kernel installer for WebKernel applications.
"""

__version__ = "0.4.0"
