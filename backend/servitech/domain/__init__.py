"""Pure lifecycle rules: intervals, commission, advisory and escrow transitions."""
