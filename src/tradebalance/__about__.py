__title__ = "TradeBalance"
__version__ = "0.1.0"
