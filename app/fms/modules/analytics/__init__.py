"""
Analytics: dashboard aggregates, accounting summaries, monthly financial performance
and CSV/XLSX exports. Pure math lives in calculations.py.
"""
