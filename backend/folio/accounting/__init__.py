"""Pure accounting engines: ledger replay, tax lots, corporate actions and performance."""
