"""
Central constants for the FMS application.
"""
from __future__ import annotations

# Vegetable (cultivation record) lifecycle
VEGETABLE_STATUSES = ("planning", "growing", "harvesting", "completed")

# Growing tasks
TASK_STATUSES = ("pending", "in_progress", "completed", "cancelled")
TASK_PRIORITIES = ("low", "medium", "high")
TASK_STATUS_COLORS = {
    "pending": "#94a3b8",
    "in_progress": "#3b82f6",
    "completed": "#10b981",
    "cancelled": "#ef4444",
}

# Work reports
WORK_TYPES = (
    "seeding",
    "planting",
    "fertilizing",
    "watering",
    "weeding",
    "pruning",
    "harvesting",
    "other",
)
WORK_TYPE_LABELS = {
    "seeding": "Seeding",
    "planting": "Planting",
    "fertilizing": "Fertilizing",
    "watering": "Watering",
    "weeding": "Weeding",
    "pruning": "Pruning",
    "harvesting": "Harvesting",
    "other": "Other",
}
HARVEST_QUALITIES = ("premium", "excellent", "good", "fair", "poor")

# Labor cost (JPY per worker-hour) by work type
LABOR_COST_PER_HOUR = {
    "seeding": 1200,
    "planting": 1000,
    "fertilizing": 800,
    "watering": 600,
    "weeding": 900,
    "pruning": 1100,
    "harvesting": 1500,
    "other": 800,
}
DEFAULT_LABOR_COST_PER_HOUR = 800

# Fertilizer cost (JPY per kg) by product type
FERTILIZER_COST_PER_KG = {
    "化成肥料": 150,  # chemical
    "有機肥料": 200,  # organic
    "堆肥": 50,  # compost
}
DEFAULT_FERTILIZER_COST_PER_KG = 120

# Market price (JPY per kg), matched by partial vegetable name
VEGETABLE_PRICE_PER_KG = {
    "トマト": 650,
    "レタス": 400,
    "キュウリ": 500,
    "ナス": 600,
    "ピーマン": 550,
    "キャベツ": 250,
    "ダイコン": 200,
    "ニンジン": 300,
    "ホウレンソウ": 800,
    "コマツナ": 700,
}
DEFAULT_VEGETABLE_PRICE_PER_KG = 450

QUALITY_PRICE_MULTIPLIER = {
    "premium": 1.3,
    "excellent": 1.3,
    "good": 1.0,
}
DEFAULT_QUALITY_PRICE_MULTIPLIER = 0.8

ANALYTICS_PERIOD_DAYS = {
    "1month": 30,
    "3months": 90,
    "6months": 180,
    "1year": 365,
}
DEFAULT_ANALYTICS_PERIOD_DAYS = 90

# Photos
PHOTO_ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/webp"})
PHOTO_MAX_BYTES = 50 * 1024 * 1024

# Farm plot mesh
DEFAULT_MESH_SIZE_METERS = 5
