"""
Entity taxonomy discovery and comment annotation.

Usage:
    python services/pipeline/entities/discover_entities.py CMS-2025-0050-0031
"""
