"""HTTP surface for Anchor Recon (FastAPI)."""
