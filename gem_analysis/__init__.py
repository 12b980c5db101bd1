"""
Multi-image AI gemstone analysis pipeline.

Sends each item's photo set to a vision model in one request, normalizes
the loosely structured reply into confidence-scored attribute values,
picks a primary display image and merges results without touching
curated manual data.
"""

__version__ = "1.0.0"
