"""On-chain game sessions."""
