"""ORB feature extraction, descriptor matching, map points, map bookkeeping and drawing geometry for visual SLAM."""

__version__ = "0.1.0"
__all__ = ["__version__"]