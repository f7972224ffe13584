"""Pure analytics: put-call parity carry, Black-Scholes IV, spread z-score."""
