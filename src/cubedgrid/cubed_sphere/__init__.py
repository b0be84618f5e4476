"""
Cubed Sphere Package

This package contains the cubed sphere geometry (coordinate
transformations and metric) and the fixed topology of the six panels,
including the seams along which neighbouring panels meet.
"""
