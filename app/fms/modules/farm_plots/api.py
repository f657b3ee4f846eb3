from __future__ import annotations

from flask import Blueprint, request

from app.fms.constants import DEFAULT_MESH_SIZE_METERS
from app.fms.db import db_session
from app.fms.errors import NotFound, ValidationError
from app.fms.modules.farm_plots.models import FarmPlot
from app.fms.modules.farm_plots.service import (
    assign_cells,
    create_plot,
    generate_plot_mesh,
    list_cells,
    list_plots,
    list_vegetable_cells,
    serialize_cell,
    serialize_plot,
    serialize_vegetable_cell,
)
from app.fms.modules.vegetables.service import get_active_vegetable
from app.fms.rbac import require_permission
from app.fms.tenancy import require_company_access, resolve_company_id
from app.fms.utils import current_user, json_ok, parse_bool, parse_float, parse_int, request_payload

bp = Blueprint("farm_plots_api", __name__)


def _load_plot(s, plot_id: int | None) -> FarmPlot:
    if not plot_id:
        raise ValidationError("farm_plot_id is required")
    plot = s.get(FarmPlot, plot_id)
    if plot is None:
        raise NotFound("Farm plot not found")
    require_company_access(s, plot.company_id)
    return plot


@bp.get("/farm-plots")
@require_permission("plots.view")
def farm_plots_list():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    plots = list_plots(s, company_id, plot_id=parse_int(request.args.get("plot_id")))
    return json_ok([serialize_plot(p) for p in plots], total=len(plots))


@bp.post("/farm-plots")
@require_permission("plots.edit")
def farm_plots_create():
    s = db_session()
    payload = request_payload()
    require_company_access(s, resolve_company_id(payload))
    plot = create_plot(s, payload, current_user())
    s.commit()
    return json_ok(serialize_plot(plot), 201, message="Farm plot created")


@bp.get("/mesh-cells")
@require_permission("plots.view")
def mesh_cells_list():
    s = db_session()
    plot = _load_plot(s, parse_int(request.args.get("farm_plot_id")))
    with_vegetables = parse_bool(request.args.get("include_vegetables"))
    cells = list_cells(s, plot)
    return json_ok([serialize_cell(c, with_vegetable=with_vegetables) for c in cells], total=len(cells))


@bp.post("/mesh-cells")
@require_permission("plots.edit")
def mesh_cells_generate():
    s = db_session()
    payload = request_payload()
    plot = _load_plot(s, parse_int(payload.get("farm_plot_id")))
    size = parse_float(payload.get("mesh_size_meters"), DEFAULT_MESH_SIZE_METERS)
    cells = generate_plot_mesh(
        s,
        plot,
        current_user(),
        mesh_size_meters=size,
        regenerate=parse_bool(payload.get("regenerate")),
    )
    s.commit()
    return json_ok(
        {
            "farm_plot_id": plot.id,
            "total_cells": len(cells),
            "covered_area_sqm": sum(c.area_sqm for c in cells),
            "mesh_size_meters": size,
        },
        201,
        message="Mesh generated",
    )


@bp.get("/vegetable-cells")
@require_permission("plots.view")
def vegetable_cells_list():
    s = db_session()
    company_id = require_company_access(s, resolve_company_id())
    rows = list_vegetable_cells(
        s,
        company_id,
        vegetable_id=parse_int(request.args.get("vegetable_id")),
        plot_cell_id=parse_int(request.args.get("plot_cell_id")),
    )
    return json_ok([serialize_vegetable_cell(vc) for vc in rows], total=len(rows))


@bp.post("/vegetable-cells")
@require_permission("plots.edit")
def vegetable_cells_assign():
    s = db_session()
    payload = request_payload()
    vegetable_id = parse_int(payload.get("vegetable_id"))
    cells = payload.get("cells")
    if not vegetable_id or not isinstance(cells, list) or not cells:
        raise ValidationError("vegetable_id and cells array are required")
    veg = get_active_vegetable(s, vegetable_id)
    if veg is None:
        raise NotFound("Vegetable not found")
    require_company_access(s, veg.company_id)

    created = assign_cells(s, veg, cells, current_user())
    s.commit()
    return json_ok([serialize_vegetable_cell(vc) for vc in created], 201, total=len(created))
