"""
Parallel Package

This package contains the communication contexts used by the grid: an
mpi4py-backed communicator and a threaded in-process transport.
"""
