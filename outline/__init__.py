"""
Outline: building footprints drawn onto tile canvases

- Decodes Overpass JSON into building rings (footprints.py)
- Classifies each polygon by geodesic area and excluded tags (classify.py)
- Projects and draws polygons into every tile they touch (rasterize.py)
- CLI: python -m outline.pipeline --config config/params.yaml --footprints FILE
"""
