"""pricewatch: tracks asset prices and answers nearest-timestamp queries."""

__version__ = "0.1.0"
