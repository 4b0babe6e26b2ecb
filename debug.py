from ecogrid import RasterGrid

# 2 x 2 global grid with cells numbered 1..4 row-major
geometry = RasterGrid.from_bbox(
    xmin=-180, ymin=-90, xmax=180, ymax=90,
    cell_width=180, cell_height=90, crs="EPSG:4326"
)

probability = geometry.cell_ids().substitute({1: 0.2, 2: 0.8})
print(probability.to_xyz(include_missing=True))
