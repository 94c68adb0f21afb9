"""
Mosaic: N x N tile blocks stitched into larger images

- Blocks are keyed by their anchor (x % N == 0 and y % N == 0); any member tile can trigger the build
- Each block is built at most once per run, whatever the worker count (coordinator.py)
- Outputs: `{y}-{x}.jpg` stitched imagery, `{y}-{x}.png` stitched outlines
- CLI: python -m mosaic.pipeline --config config/params.yaml
"""
