"""triagectl -- tiered root-cause classification for CI failures."""

__version__ = "0.1.0"
