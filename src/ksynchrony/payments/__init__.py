"""Merchant payment requests and confirmation checks."""
