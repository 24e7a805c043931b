"""
TradeFlash - Live equities, option chains and options flow (sweeps/blocks).

Architecture:
- datafeed/: Stream connection lifecycle, frame dispatch, watchlist requests
- engine/: Normalizers, in-memory state store, derived views
- ui/: Dashboard panels (Textual TUI)
"""

__version__ = "0.1.0"
