"""
Building Outline Tiles Test Suite

This package contains tests for the tile cache, outline rasterizer and mosaic stitcher.

Structure:
- unit/: Unit tests for individual components
- integration/: End-to-end runs against temporary tile directories
"""
