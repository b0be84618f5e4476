"""
Main entry point for running the cubedgrid demonstration.

This script runs the `run_cubedgrid` function from the `default_run`
module under MPI, e.g. ``mpiexec -n 4 python -m cubedgrid``.
"""

from .default_run import run_cubedgrid

run_cubedgrid()
