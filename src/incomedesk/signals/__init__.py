from __future__ import annotations

from incomedesk.signals.regime import (
    SECTOR_ETFS,
    RegimeDetector,
    RegimeUnavailableError,
    assess_breadth,
    risk_posture,
)
from incomedesk.signals.symbol import SymbolAnalyzer

__all__ = [
    "SECTOR_ETFS",
    "RegimeDetector",
    "RegimeUnavailableError",
    "SymbolAnalyzer",
    "assess_breadth",
    "risk_posture",
]
