"""
Vegetables: cultivation records (one crop instance on one plot).

Owns the vegetables table, the list/detail pages under /admin/vegetables and the
JSON API under /api/vegetables (including the deletion impact report).
"""
