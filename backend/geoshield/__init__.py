"""
GeoShield location privacy service.
"""
