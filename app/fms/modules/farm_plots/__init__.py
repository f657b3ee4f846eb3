"""
Farm plots: drawn field boundaries, their square mesh cells and the
vegetable-to-cell assignments.
"""
