"""
Accounting: the blue-return chart of accounts, per-report income/expense lines and
the per-company item recommendations learned from those lines.
"""
