"""Dependency helpers (package marker).

Real implementations live in dedicated sub-modules so that the package root
stays empty.
"""
