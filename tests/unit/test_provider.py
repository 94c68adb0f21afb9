"""
Unit tests for the imagery provider
"""

import pytest
import os
import sys
from unittest.mock import Mock

import requests

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.config import ARCGIS_WORLD_IMAGERY
from common.errors import FetchError
from common.types import TileAddress
from tile_cache.provider import ImageryProvider


class TestImageryProvider:
    """Test cases for ImageryProvider"""

    def test_default_template(self):
        """Default provider is ArcGIS World Imagery"""
        provider = ImageryProvider(session=Mock())
        assert provider.url_template == ARCGIS_WORLD_IMAGERY
        assert provider.timeout == 10.0

    def test_tile_url_keeps_template_order(self):
        """ArcGIS puts the row before the column"""
        provider = ImageryProvider(session=Mock())
        url = provider.tile_url(TileAddress(17, 71829, 41234))
        assert url.endswith("/tile/17/41234/71829")

    def test_tile_url_xyz_template(self):
        """Other providers use z/x/y"""
        provider = ImageryProvider("https://tiles.example/{z}/{x}/{y}.png", session=Mock())
        assert provider.tile_url(TileAddress(3, 1, 2)) == "https://tiles.example/3/1/2.png"

    def test_fetch_success(self):
        """200 with a body returns the bytes"""
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.content = b"fake_image_data"
        session = Mock()
        session.get.return_value = mock_response

        provider = ImageryProvider(session=session, timeout=3)
        assert provider.fetch("https://tiles.example/1") == b"fake_image_data"
        session.get.assert_called_once_with("https://tiles.example/1", timeout=3.0)

    def test_fetch_non_200(self):
        """HTTP errors raise FetchError"""
        mock_response = Mock()
        mock_response.status_code = 404
        mock_response.content = b"not found"
        mock_response.text = "not found"
        session = Mock()
        session.get.return_value = mock_response

        provider = ImageryProvider(session=session)
        with pytest.raises(FetchError, match="404"):
            provider.fetch("https://tiles.example/1")

    def test_fetch_empty_body(self):
        """200 without a body is a failure"""
        mock_response = Mock()
        mock_response.status_code = 200
        mock_response.content = b""
        session = Mock()
        session.get.return_value = mock_response

        provider = ImageryProvider(session=session)
        with pytest.raises(FetchError):
            provider.fetch("https://tiles.example/1")

    def test_fetch_network_error(self):
        """Transport exceptions are wrapped"""
        session = Mock()
        session.get.side_effect = requests.ConnectionError("Network error")

        provider = ImageryProvider(session=session)
        with pytest.raises(FetchError, match="Network error"):
            provider.fetch("https://tiles.example/1")
