"""Persistent price store: contract and DataFrame-backed implementation."""
from .base import PriceStore
from .frame_store import FramePriceStore

__all__ = ['PriceStore', 'FramePriceStore']
