"""quota-sentinel: poll API accounts for remaining quota and predict depletion."""

__version__ = "0.1.0"
