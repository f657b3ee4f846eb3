from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.fms.audit import record_event
from app.fms.constants import DEFAULT_MESH_SIZE_METERS
from app.fms.errors import Conflict, ValidationError
from app.fms.modules.farm_plots.mesh import MeshError, generate_mesh, polygon_area_sqm, polygon_ring
from app.fms.utils import clean_str, iso, parse_date, parse_float, parse_int

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.fms.models import User
    from app.fms.modules.farm_plots.models import FarmPlot, PlotCell, VegetableCell
    from app.fms.modules.vegetables.models import Vegetable

logger = logging.getLogger(__name__)

HEALTH_STATUSES = ("healthy", "warning", "diseased", "dead")


def serialize_plot(plot: "FarmPlot") -> dict:
    return {
        "id": plot.id,
        "company_id": plot.company_id,
        "name": plot.name,
        "description": plot.description,
        "area_hectares": plot.area_hectares,
        "geometry": plot.geometry,
        "prefecture": plot.prefecture,
        "city": plot.city,
        "address": plot.address,
        "postal_code": plot.postal_code,
        "status": plot.status,
        "is_mesh_generated": plot.is_mesh_generated,
        "mesh_size_meters": plot.mesh_size_meters,
        "mesh_generated_at": iso(plot.mesh_generated_at),
        "created_at": iso(plot.created_at),
        "updated_at": iso(plot.updated_at),
    }


def list_plots(s: "Session", company_id: int, *, plot_id: int | None = None) -> list["FarmPlot"]:
    from app.fms.modules.farm_plots.models import FarmPlot

    q = s.query(FarmPlot).filter(FarmPlot.company_id == company_id).filter(FarmPlot.status == "active")
    if plot_id:
        q = q.filter(FarmPlot.id == plot_id)
    return q.order_by(FarmPlot.created_at.desc(), FarmPlot.id.desc()).all()


def create_plot(s: "Session", payload: dict, user: "User") -> "FarmPlot":
    """Create a field boundary. Caller has already checked company access."""
    from app.fms.modules.farm_plots.models import FarmPlot

    errors: list[str] = []
    name = clean_str(payload.get("name"))
    geometry = payload.get("geometry")
    if not payload.get("company_id"):
        errors.append("company_id is required")
    if not name:
        errors.append("name is required")
    if not geometry:
        errors.append("geometry is required")
    else:
        try:
            polygon_ring(geometry)
        except MeshError as e:
            errors.append(str(e))
    if errors:
        raise ValidationError.from_errors(errors)

    if isinstance(geometry, dict) and geometry.get("type") == "Feature":
        geometry = geometry["geometry"]
    area_hectares = parse_float(payload.get("area_hectares"))
    if area_hectares is None:
        area_hectares = round(polygon_area_sqm(geometry) / 10_000, 4)

    now = datetime.utcnow()
    plot = FarmPlot(
        company_id=parse_int(payload.get("company_id")),
        name=name,
        description=clean_str(payload.get("description")),
        area_hectares=area_hectares,
        geometry=geometry,
        prefecture=clean_str(payload.get("prefecture")),
        city=clean_str(payload.get("city")),
        address=clean_str(payload.get("address")),
        postal_code=clean_str(payload.get("postal_code")),
        status="active",
        is_mesh_generated=False,
        mesh_size_meters=DEFAULT_MESH_SIZE_METERS,
        created_at=now,
        updated_at=now,
        created_by_user_id=user.id,
    )
    s.add(plot)
    s.flush()
    record_event(
        s,
        actor=user,
        action="farm_plot.create",
        entity_type="FarmPlot",
        entity_id=str(plot.id),
        company_id=plot.company_id,
        metadata={"name": plot.name, "area_hectares": plot.area_hectares},
    )
    return plot


def _cell_vegetable(cell: "PlotCell") -> dict | None:
    if not cell.vegetable_cells:
        return None
    vc = cell.vegetable_cells[0]
    veg = vc.vegetable
    return {
        "id": veg.id,
        "name": veg.name,
        "variety_name": veg.variety_name,
        "status": veg.status,
        "planting_date": iso(vc.planting_date),
        "growth_stage": vc.growth_stage,
        "health_status": vc.health_status,
    }


def serialize_cell(cell: "PlotCell", *, with_vegetable: bool = False) -> dict:
    data = {
        "id": cell.id,
        "farm_plot_id": cell.farm_plot_id,
        "cell_index": cell.cell_index,
        "row_index": cell.row_index,
        "col_index": cell.col_index,
        "geometry": cell.geometry,
        "center_lat": cell.center_lat,
        "center_lng": cell.center_lng,
        "area_sqm": cell.area_sqm,
        "is_cultivated": cell.is_cultivated,
        "vegetable_count": cell.vegetable_count,
    }
    if with_vegetable:
        data["vegetable_info"] = _cell_vegetable(cell)
    return data


def list_cells(s: "Session", plot: "FarmPlot") -> list["PlotCell"]:
    from app.fms.modules.farm_plots.models import PlotCell

    return (
        s.query(PlotCell)
        .filter(PlotCell.farm_plot_id == plot.id)
        .order_by(PlotCell.row_index.asc(), PlotCell.col_index.asc())
        .all()
    )


def generate_plot_mesh(
    s: "Session",
    plot: "FarmPlot",
    user: "User",
    *,
    mesh_size_meters: float = DEFAULT_MESH_SIZE_METERS,
    regenerate: bool = False,
) -> list["PlotCell"]:
    """Build (or rebuild) the plot's cells. Raises Conflict when a mesh exists and regenerate is off."""
    from app.fms.modules.farm_plots.models import PlotCell

    existing = s.query(PlotCell.id).filter(PlotCell.farm_plot_id == plot.id).first()
    if existing is not None and not regenerate:
        raise Conflict("Mesh already exists. Use regenerate=true to recreate.")

    try:
        mesh = generate_mesh(plot.geometry, mesh_size_meters)
    except MeshError as e:
        raise ValidationError(str(e)) from e

    if existing is not None:
        s.query(PlotCell).filter(PlotCell.farm_plot_id == plot.id).delete(synchronize_session=False)
        s.expire(plot, ["cells"])

    now = datetime.utcnow()
    cells = [
        PlotCell(
            farm_plot_id=plot.id,
            cell_index=c.cell_index,
            row_index=c.row_index,
            col_index=c.col_index,
            geometry=c.geometry,
            center_lat=c.center_lat,
            center_lng=c.center_lng,
            area_sqm=c.area_sqm,
            is_cultivated=False,
            vegetable_count=0,
            created_at=now,
        )
        for c in mesh
    ]
    s.add_all(cells)
    plot.is_mesh_generated = True
    plot.mesh_size_meters = mesh_size_meters
    plot.mesh_generated_at = now
    plot.updated_at = now
    s.flush()

    record_event(
        s,
        actor=user,
        action="farm_plot.mesh_generate",
        entity_type="FarmPlot",
        entity_id=str(plot.id),
        company_id=plot.company_id,
        metadata={"cells": len(cells), "mesh_size_meters": mesh_size_meters, "regenerate": bool(existing)},
    )
    logger.info("Generated %s mesh cells for plot %s (%sm)", len(cells), plot.id, mesh_size_meters)
    return cells


def serialize_vegetable_cell(vc: "VegetableCell") -> dict:
    veg = vc.vegetable
    cell = vc.plot_cell
    return {
        "id": vc.id,
        "vegetable_id": vc.vegetable_id,
        "plot_cell_id": vc.plot_cell_id,
        "planting_date": iso(vc.planting_date),
        "plant_count": vc.plant_count,
        "growth_stage": vc.growth_stage,
        "health_status": vc.health_status,
        "notes": vc.notes,
        "vegetable": {"id": veg.id, "name": veg.name, "variety_name": veg.variety_name, "status": veg.status}
        if veg is not None
        else None,
        "plot_cell": {"id": cell.id, "row_index": cell.row_index, "col_index": cell.col_index, "area_sqm": cell.area_sqm}
        if cell is not None
        else None,
    }


def list_vegetable_cells(
    s: "Session",
    company_id: int,
    *,
    vegetable_id: int | None = None,
    plot_cell_id: int | None = None,
) -> list["VegetableCell"]:
    from app.fms.modules.farm_plots.models import VegetableCell
    from app.fms.modules.vegetables.models import Vegetable

    q = s.query(VegetableCell).join(Vegetable, VegetableCell.vegetable_id == Vegetable.id)
    q = q.filter(Vegetable.company_id == company_id)
    if vegetable_id:
        q = q.filter(VegetableCell.vegetable_id == vegetable_id)
    if plot_cell_id:
        q = q.filter(VegetableCell.plot_cell_id == plot_cell_id)
    return q.order_by(VegetableCell.id.asc()).all()


def assign_cells(s: "Session", vegetable: "Vegetable", cells: list[dict[str, Any]], user: "User") -> list["VegetableCell"]:
    """Attach a vegetable to mesh cells of its company's plots; updates cell cultivation counters."""
    from app.fms.modules.farm_plots.models import FarmPlot, PlotCell, VegetableCell

    if not isinstance(cells, list) or not cells:
        raise ValidationError("vegetable_id and cells array are required")

    cell_ids = []
    for item in cells:
        cid = parse_int(item.get("plot_cell_id")) if isinstance(item, dict) else parse_int(item)
        if not cid:
            raise ValidationError("Each cell needs a plot_cell_id")
        cell_ids.append(cid)

    found = {
        c.id: c
        for c in s.query(PlotCell)
        .join(FarmPlot, PlotCell.farm_plot_id == FarmPlot.id)
        .filter(PlotCell.id.in_(cell_ids))
        .filter(FarmPlot.company_id == vegetable.company_id)
        .all()
    }
    missing = [cid for cid in cell_ids if cid not in found]
    if missing:
        raise ValidationError(f"Unknown plot_cell_id: {', '.join(str(m) for m in missing)}")

    already = {
        vc.plot_cell_id
        for vc in s.query(VegetableCell)
        .filter(VegetableCell.vegetable_id == vegetable.id)
        .filter(VegetableCell.plot_cell_id.in_(cell_ids))
        .all()
    }
    if already:
        raise Conflict(f"Vegetable already assigned to cell(s): {', '.join(str(c) for c in sorted(already))}")

    created = []
    for item, cid in zip(cells, cell_ids):
        item = item if isinstance(item, dict) else {}
        health = clean_str(item.get("health_status")) or "healthy"
        if health not in HEALTH_STATUSES:
            raise ValidationError(f"Invalid health_status. Must be one of: {', '.join(HEALTH_STATUSES)}")
        vc = VegetableCell(
            vegetable_id=vegetable.id,
            plot_cell_id=cid,
            planting_date=parse_date(item.get("planting_date")) or vegetable.planting_date,
            plant_count=parse_int(item.get("plant_count"), 1) or 1,
            growth_stage=clean_str(item.get("growth_stage")),
            health_status=health,
            notes=clean_str(item.get("notes")),
        )
        s.add(vc)
        cell = found[cid]
        cell.is_cultivated = True
        cell.vegetable_count = (cell.vegetable_count or 0) + 1
        created.append(vc)
    s.flush()

    record_event(
        s,
        actor=user,
        action="vegetable.cells_assign",
        entity_type="Vegetable",
        entity_id=str(vegetable.id),
        company_id=vegetable.company_id,
        metadata={"plot_cell_ids": cell_ids},
    )
    return created
