from __future__ import annotations

from incomedesk.models.market import (
    HistoricalPrice,
    OptionChain,
    OptionContract,
    OptionType,
    Quote,
    VolatilityData,
)
from incomedesk.models.regime import (
    Breadth,
    BreadthAssessment,
    DataQuality,
    EarningsProximity,
    LiquidityScores,
    MarketRegime,
    RiskPosture,
    SectorLeadership,
    SymbolSignals,
    TrendRegime,
    VolatilityRegime,
)
from incomedesk.models.trade import (
    ConvictionFactor,
    ConvictionMeter,
    ExitRules,
    FactorImpact,
    InvalidationCondition,
    InvalidationType,
    LegAction,
    OptionLeg,
    PacketStatus,
    Reason,
    RiskBox,
    ScoreComponent,
    StrategyCandidate,
    StrategyType,
    TradePacket,
)

__all__ = [
    # market
    "OptionType",
    "Quote",
    "HistoricalPrice",
    "OptionContract",
    "OptionChain",
    "VolatilityData",
    # regime
    "TrendRegime",
    "VolatilityRegime",
    "RiskPosture",
    "BreadthAssessment",
    "Breadth",
    "SectorLeadership",
    "DataQuality",
    "MarketRegime",
    "LiquidityScores",
    "EarningsProximity",
    "SymbolSignals",
    # trade
    "StrategyType",
    "LegAction",
    "InvalidationType",
    "FactorImpact",
    "PacketStatus",
    "OptionLeg",
    "RiskBox",
    "ExitRules",
    "InvalidationCondition",
    "Reason",
    "ScoreComponent",
    "ConvictionFactor",
    "ConvictionMeter",
    "StrategyCandidate",
    "TradePacket",
]
