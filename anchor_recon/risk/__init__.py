"""Wallet behavioral risk scoring."""
