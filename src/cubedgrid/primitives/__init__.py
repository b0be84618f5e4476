"""
Primitives Package

This package contains the building blocks shared by the grid modules: the
enumerations used to address data, the immutable patch extent and the
NetCDF input/output helper.
"""
