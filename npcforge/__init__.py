"""NPC Forge: compendium lookup and budget-constrained item resolution."""

__version__ = "1.4.0"
