"""
Photos: crop images stored in object storage with metadata rows.
"""
