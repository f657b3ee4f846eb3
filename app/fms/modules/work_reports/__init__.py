"""
Work reports (operation logs): records of field work actually performed.
"""
