"""Decision engine for short-window crypto up/down prediction markets."""
