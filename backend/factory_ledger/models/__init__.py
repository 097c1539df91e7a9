from .workers import Worker
from .inventory import InventoryItem, InventoryTransaction
from .rates import Rate, RateMaterial
from .production import WorkerLog
from .payroll import Deduction, PayrollRun, PayrollRunEntry
from .audit import LedgerEvent

__all__ = [
    'Worker',
    'InventoryItem', 'InventoryTransaction',
    'Rate', 'RateMaterial',
    'WorkerLog',
    'Deduction', 'PayrollRun', 'PayrollRunEntry',
    'LedgerEvent',
]
