"""
APIBola - Broken Object Level Authorization request generator

Builds every request an OpenAPI description allows, fills identifiers from a
rule database, replays them and flags responses worth a human's attention.
"""

__version__ = "1.0.0"
__description__ = "OpenAPI-driven request generator for BOLA/IDOR detection"
