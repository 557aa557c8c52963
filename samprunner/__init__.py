"""
SA-MP Runner

Installs, configures and runs GTA San Andreas and the SA-MP client under Wine.
"""

__version__ = "0.3.0"
