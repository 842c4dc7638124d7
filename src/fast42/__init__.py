"""Fast server-side connector for the 42 intra API."""

from fast42.api import ApiSecret, Fast42

__version__ = "1.1.0"

__all__ = ["ApiSecret", "Fast42", "__version__"]
