"""Background evaluation passes (alerts, signals, suggestions)."""
