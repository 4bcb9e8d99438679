from .monitor import SupplierHealthMonitor

__all__ = ['SupplierHealthMonitor']
