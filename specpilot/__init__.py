# specpilot/__init__.py
"""
SpecPilot - autonomous API test generation with a self-healing loop.
"""
__version__ = "0.1.0"
