"""
Growing tasks: planned work items for a vegetable, plus the gantt feed.
"""
