"""clickmarket - order, payment, invoice and delivery lifecycle core."""

__version__ = "0.1.0"
