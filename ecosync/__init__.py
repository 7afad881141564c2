"""EcoSync Home: appliance ledger, tiered cost, projection and a tool-calling assistant."""

__version__ = "0.1.0"
