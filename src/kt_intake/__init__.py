"""
KT Intake: Kepner-Tregoe incident intake engine

Versioned snapshot migration, possible-cause decisions, and hypothesis synthesis.
"""

try:
    from importlib.metadata import version
    __version__ = version("kt-intake")
except Exception:
    __version__ = "0.0.0"  # Fallback for development

__all__ = ["__version__"]
