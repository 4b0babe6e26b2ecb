import numpy as np
import pandas as pd
import pytest
import yaml

import geopandas as gpd
from shapely.geometry import Point, box

from ecogrid import ConfigurationError, Raster, RasterGrid, RasterStack
from ecogrid import workflow
from ecogrid.cli import main
from ecogrid.config import WorkflowConfig
from ecogrid.workflow import (
    distance_to_ports,
    load_cells,
    run,
    species_probability,
    species_richness,
)

UTM = "EPSG:32633"


@pytest.fixture
def occurrences():
    return pd.DataFrame({
        "cell_id": [1, 1, 2, 3],
        "species_id": ["a", "b", "a", "b"],
        "probability": [0.9, 0.6, 0.2, 0.7]
    })


@pytest.fixture
def cells():
    # 2 rows x 4 cols, cells numbered 1..8
    return RasterGrid.from_bbox(xmin=0, ymin=0, xmax=4, ymax=2, cell_size=1, crs=UTM).cell_ids()


@pytest.fixture
def workspace(tmp_path, occurrences):
    occurrences.to_csv(tmp_path / "occurrences.csv", index=False)
    ports = gpd.GeoDataFrame({"name": ["harbour"]}, geometry=[Point(3.5, 0.5)], crs=UTM)
    ports.to_file(tmp_path / "ports.gpkg", driver="GPKG")

    settings = {
        "crs": UTM,
        "extent": [0, 0, 4, 2],
        "cell_size": 1,
        "occurrences": "occurrences.csv",
        "ports": "ports.gpkg",
        "species": ["a"],
        "threshold": 0.5,
        "output_dir": "output"
    }

    with open(tmp_path / "workflow.yaml", "w") as file:
        yaml.safe_dump(settings, file)

    return tmp_path


def test_species_probability(cells, occurrences):
    probability = species_probability(cells, occurrences, "a")

    np.testing.assert_array_equal(probability.data, [
        [0.9, 0.2, np.nan, np.nan],
        [np.nan, np.nan, np.nan, np.nan]
    ])


def test_species_richness(cells, occurrences):
    richness = species_richness(cells, occurrences, threshold=0.5)

    np.testing.assert_array_equal(richness.data, [
        [2, np.nan, 1, np.nan],
        [np.nan, np.nan, np.nan, np.nan]
    ])


def test_distance_to_ports(cells):
    ports = gpd.GeoDataFrame(geometry=[Point(3.5, 0.5)], crs=UTM)

    distance = distance_to_ports(ports, cells.geometry)

    assert distance.array[1, 3] == 0
    assert distance.array[0, 0] == pytest.approx(np.sqrt(10))


def test_load_cells_from_table(tmp_path):
    table = pd.DataFrame({"lon": [0.5, 1.5, 0.5], "lat": [1.5, 1.5, 0.5], "loiczid": [10, 11, 12]})
    table.to_csv(tmp_path / "cells.csv", index=False)

    config = WorkflowConfig(
        crs="EPSG:4326",
        cells=tmp_path / "cells.csv",
        cell_columns={"x": "lon", "y": "lat", "id": "loiczid"},
        occurrences=tmp_path / "occurrences.csv",
        output_dir=tmp_path
    )

    cells = load_cells(config)

    np.testing.assert_array_equal(cells.data, [[10, 11], [12, np.nan]])


def test_run(workspace):
    config = WorkflowConfig.from_yaml(workspace / "workflow.yaml")

    outputs = run(config)

    assert list(outputs) == ["probability_a", "richness", "port_distance", "layers"]
    assert all(filename.exists() for filename in outputs.values())

    richness = Raster.open(str(outputs["richness"]))

    assert richness.geometry == RasterGrid.from_bbox(xmin=0, ymin=0, xmax=4, ymax=2, cell_size=1, crs=UTM)
    np.testing.assert_array_equal(richness.data, [
        [2, np.nan, 1, np.nan],
        [np.nan, np.nan, np.nan, np.nan]
    ])

    stack = RasterStack.open(str(outputs["layers"]))

    assert list(stack) == ["probability_a", "richness", "port_distance"]
    assert stack["port_distance"].array[0, 0] == pytest.approx(np.sqrt(10))


def test_run_with_region_and_reprojection(workspace):
    region = gpd.GeoDataFrame(geometry=[box(0, 0, 2, 2)], crs=UTM)
    region.to_file(workspace / "region.gpkg", driver="GPKG")

    config = WorkflowConfig.from_dict({
        "crs": UTM,
        "extent": [0, 0, 4, 2],
        "cell_size": 1,
        "occurrences": "occurrences.csv",
        "region": "region.gpkg",
        "target_crs": "EPSG:32633",
        "target_cell_size": 0.5,
        "output_dir": "regional",
        "plot": True
    }, base_dir=workspace)

    outputs = run(config)
    richness = Raster.open(str(outputs["richness"]))

    assert richness.shape == (4, 4)
    assert richness.geometry.cell_width == pytest.approx(0.5)
    assert np.nanmax(richness.data) == 2
    assert (workspace / "regional" / "richness.png").exists()


def test_config_validation(tmp_path):
    with pytest.raises(ValueError, match="unknown"):
        WorkflowConfig.from_dict({"crs": UTM, "occurrences": "a.csv", "output_dir": "out", "colour": "red"})

    with pytest.raises(ValueError, match="missing"):
        WorkflowConfig.from_dict({"crs": UTM, "extent": [0, 0, 1, 1], "cell_size": 1})

    with pytest.raises(ValueError):
        WorkflowConfig.from_dict({"crs": UTM, "occurrences": "a.csv", "output_dir": "out"})

    with pytest.raises(ValueError):
        WorkflowConfig(crs=UTM, occurrences="a.csv", output_dir="out", extent=[0, 0, 1, 1], cell_size=1, threshold=2)


def test_config_resolves_relative_paths(workspace):
    config = WorkflowConfig.from_yaml(workspace / "workflow.yaml")

    assert config.occurrences == workspace / "occurrences.csv"
    assert config.output_dir == workspace / "output"
    assert config.occurrence_columns["cell"] == "cell_id"


def test_cli(workspace, capsys):
    assert main([str(workspace / "workflow.yaml")]) == 0
    assert "richness" in capsys.readouterr().out


def test_cli_reports_errors(tmp_path):
    with open(tmp_path / "broken.yaml", "w") as file:
        yaml.safe_dump({"crs": UTM}, file)

    assert main([str(tmp_path / "broken.yaml")]) == 1


def test_run_measures_distance_to_ports_outside_region(workspace):
    ports = gpd.GeoDataFrame(geometry=[Point(7.5, 0.5)], crs=UTM)
    ports.to_file(workspace / "far_ports.gpkg", driver="GPKG")
    region = gpd.GeoDataFrame(geometry=[box(0, 0, 4, 2)], crs=UTM)
    region.to_file(workspace / "west.gpkg", driver="GPKG")

    config = WorkflowConfig.from_dict({
        "crs": UTM,
        "extent": [0, 0, 8, 2],
        "cell_size": 1,
        "occurrences": "occurrences.csv",
        "ports": "far_ports.gpkg",
        "region": "west.gpkg",
        "output_dir": "west"
    }, base_dir=workspace)

    outputs = run(config)
    distance = Raster.open(str(outputs["port_distance"]))

    assert distance.shape == (2, 4)
    assert distance.array[1, 3] == pytest.approx(4.0)
    assert distance.array[0, 0] == pytest.approx(np.hypot(7, 1))


def test_config_errors_are_configuration_errors():
    with pytest.raises(ConfigurationError, match="missing"):
        WorkflowConfig.from_dict({"crs": UTM})


def test_cli_reports_unreadable_files(tmp_path):
    with open(tmp_path / "invalid.yaml", "w") as file:
        file.write("crs: [unclosed\n")

    assert main([str(tmp_path / "invalid.yaml")]) == 1
    assert main([str(tmp_path / "absent.yaml")]) == 1


def test_cli_does_not_hide_unexpected_errors(workspace, monkeypatch):
    def broken(config):
        raise KeyError("cell_id")

    monkeypatch.setattr(workflow, "run", broken)

    with pytest.raises(KeyError):
        main([str(workspace / "workflow.yaml")])
