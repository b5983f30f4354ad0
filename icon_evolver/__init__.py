"""Icon Evolver — trend-guided app icon evolution on Gemini."""

__version__ = "0.1.0"
