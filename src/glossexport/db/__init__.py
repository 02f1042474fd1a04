"""Relational store access: connections, schema and demo data."""
