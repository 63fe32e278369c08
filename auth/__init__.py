"""auth/ -- Authentication and authorization package for pcvisor.

Layer rule: auth/ imports stdlib, third-party libraries, and core/ only.
It does NOT import from api/ or other feature packages.
api/ imports from auth/, not the other way around.
"""
