"""
PDF Analysis Backend Application.

A FastAPI service that renders PDF pages to images, asks a multimodal
model about each page and merges the answers into one result.
"""

__version__ = "1.0.0"
