"""ServiTech advisory booking and payment escrow engine."""

__version__ = "1.0.0"
