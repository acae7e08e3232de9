"""Tools the tutor model can call, and the tutorial generator behind them."""
