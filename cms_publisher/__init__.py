"""Publishing scheduler for the content CMS."""

__version__ = "0.1.0"
