# specpilot/lib/__init__.py
"""
Infrastructure helpers - file store, child processes, monitoring.
"""
