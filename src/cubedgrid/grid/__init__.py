"""
Grid Package

This package contains the domain decomposed grid: patches, their halo
relations, the consolidation bookkeeping and the cubed sphere grid.
"""
