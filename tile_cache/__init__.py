"""
Tile Cache: base imagery and outline canvases

- Flat per-zoom stores: `{y}-{x}.jpg` (imagery) and `{y}-{x}.png` (outlines)
- Fetches each tile at most once per process through an injected ImageryProvider
- Outline canvases are persisted in batches via TileImageCache.flush_dirty()
"""
