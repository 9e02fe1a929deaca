"""Canvas-to-lat/lng geo-reference."""
