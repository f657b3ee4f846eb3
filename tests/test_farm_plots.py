import math

import pytest

from app.fms.modules.farm_plots.mesh import (
    METERS_PER_DEGREE_LAT,
    MeshError,
    generate_mesh,
    point_in_ring,
    polygon_area_sqm,
    polygon_ring,
)

LAT0, LNG0 = 35.0, 139.0


def _square(side_m: float) -> dict:
    dlat = side_m / METERS_PER_DEGREE_LAT
    dlng = side_m / (METERS_PER_DEGREE_LAT * math.cos(math.radians(LAT0 + dlat / 2)))
    return {
        "type": "Polygon",
        "coordinates": [
            [[LNG0, LAT0], [LNG0 + dlng, LAT0], [LNG0 + dlng, LAT0 + dlat], [LNG0, LAT0 + dlat], [LNG0, LAT0]]
        ],
    }


def _triangle(side_m: float) -> dict:
    square = _square(side_m)["coordinates"][0]
    return {"type": "Polygon", "coordinates": [[square[0], square[1], square[3]]]}


def test_polygon_ring_closes_and_validates():
    ring = polygon_ring(_triangle(10))
    assert ring[0] == ring[-1]
    assert len(ring) == 4

    feature = {"type": "Feature", "geometry": _square(10), "properties": {}}
    assert len(polygon_ring(feature)) == 5

    with pytest.raises(MeshError):
        polygon_ring({"type": "Point", "coordinates": [LNG0, LAT0]})
    with pytest.raises(MeshError):
        polygon_ring({"type": "Polygon", "coordinates": [[[0, 0], [1, 1]]]})
    with pytest.raises(MeshError):
        polygon_ring({"type": "Polygon", "coordinates": [[["a", 0], [1, 1], [2, 0]]]})


def test_point_in_ring():
    ring = [(0, 0), (4, 0), (4, 4), (0, 4), (0, 0)]
    assert point_in_ring((2, 2), ring)
    assert not point_in_ring((5, 2), ring)
    assert not point_in_ring((2, -1), ring)


def test_polygon_area():
    assert polygon_area_sqm(_square(18)) == pytest.approx(324, rel=1e-3)
    assert polygon_area_sqm(_triangle(18)) == pytest.approx(162, rel=1e-3)


def test_generate_mesh_covers_square():
    cells = generate_mesh(_square(18), 5)
    # 18m / 5m rounds up to four cells per side
    assert len(cells) == 16
    assert [c.cell_index for c in cells] == list(range(16))
    assert (cells[0].row_index, cells[0].col_index) == (0, 0)
    assert (cells[-1].row_index, cells[-1].col_index) == (3, 3)
    assert all(c.area_sqm == 25 for c in cells)
    assert cells[0].center_lat > LAT0
    assert cells[0].center_lng > LNG0
    assert len(cells[0].geometry["coordinates"][0]) == 5


def test_generate_mesh_skips_cells_outside_polygon():
    cells = generate_mesh(_triangle(18), 5)
    assert 0 < len(cells) < 16
    # the north-east corner lies beyond the hypotenuse
    assert (3, 3) not in {(c.row_index, c.col_index) for c in cells}


def test_generate_mesh_rejects_bad_size():
    with pytest.raises(MeshError):
        generate_mesh(_square(18), 0)


# API ------------------------------------------------------------------------


@pytest.fixture()
def plot(admin_client, company_id):
    r = admin_client.post(
        "/api/farm-plots",
        json={"company_id": company_id, "name": "North field", "geometry": _square(18), "prefecture": "Chiba"},
    )
    assert r.status_code == 201, r.json
    return r.json["data"]


def test_create_and_list_plots(admin_client, company_id, plot):
    assert plot["area_hectares"] == pytest.approx(0.0324, rel=1e-2)
    assert plot["is_mesh_generated"] is False

    r = admin_client.get(f"/api/farm-plots?company_id={company_id}")
    assert r.status_code == 200
    assert r.json["total"] == 1
    assert r.json["data"][0]["name"] == "North field"


def test_create_plot_validation(admin_client, company_id, other_company_id):
    r = admin_client.post("/api/farm-plots", json={"company_id": company_id, "name": "Bad", "geometry": {"type": "Point"}})
    assert r.status_code == 400
    assert r.json["error"] == "geometry must be a GeoJSON Polygon"

    r = admin_client.post("/api/farm-plots", json={"company_id": other_company_id, "name": "X", "geometry": _square(5)})
    assert r.status_code == 403


def test_generate_mesh_once(admin_client, plot):
    r = admin_client.post("/api/mesh-cells", json={"farm_plot_id": plot["id"], "mesh_size_meters": 5})
    assert r.status_code == 201
    assert r.json["data"]["total_cells"] == 16
    assert r.json["data"]["covered_area_sqm"] == 400

    r = admin_client.post("/api/mesh-cells", json={"farm_plot_id": plot["id"], "mesh_size_meters": 5})
    assert r.status_code == 409

    r = admin_client.post(
        "/api/mesh-cells", json={"farm_plot_id": plot["id"], "mesh_size_meters": 10, "regenerate": True}
    )
    assert r.status_code == 201
    assert r.json["data"]["total_cells"] == 4

    r = admin_client.get(f"/api/mesh-cells?farm_plot_id={plot['id']}")
    assert r.status_code == 200
    assert r.json["total"] == 4

    r = admin_client.get("/api/mesh-cells")
    assert r.status_code == 400


def test_assign_vegetable_to_cells(admin_client, company_id, plot, new_vegetable):
    admin_client.post("/api/mesh-cells", json={"farm_plot_id": plot["id"], "mesh_size_meters": 5})
    cells = admin_client.get(f"/api/mesh-cells?farm_plot_id={plot['id']}").json["data"]
    veg = new_vegetable()

    r = admin_client.post(
        "/api/vegetable-cells",
        json={
            "vegetable_id": veg["id"],
            "cells": [{"plot_cell_id": cells[0]["id"], "plant_count": 4}, {"plot_cell_id": cells[1]["id"]}],
        },
    )
    assert r.status_code == 201
    assert r.json["total"] == 2
    assert r.json["data"][0]["plant_count"] == 4
    assert r.json["data"][0]["planting_date"] == veg["planting_date"]
    assert r.json["data"][1]["health_status"] == "healthy"

    r = admin_client.post(
        "/api/vegetable-cells", json={"vegetable_id": veg["id"], "cells": [{"plot_cell_id": cells[0]["id"]}]}
    )
    assert r.status_code == 409

    r = admin_client.post("/api/vegetable-cells", json={"vegetable_id": veg["id"], "cells": [{"plot_cell_id": 99999}]})
    assert r.status_code == 400

    r = admin_client.get(f"/api/vegetable-cells?company_id={company_id}&vegetable_id={veg['id']}")
    assert r.json["total"] == 2

    r = admin_client.get(f"/api/mesh-cells?farm_plot_id={plot['id']}&include_vegetables=true")
    first = r.json["data"][0]
    assert first["is_cultivated"] is True
    assert first["vegetable_count"] == 1
    assert first["vegetable_info"]["id"] == veg["id"]
