"""
Supplier Pricing Package

Resolves effective supplier prices for customers when the live supplier API is unreliable.
Layers live price → cached price → catalog price, then applies customer overrides,
tier discounts and volume brackets.
"""

__version__ = "1.0.0"
