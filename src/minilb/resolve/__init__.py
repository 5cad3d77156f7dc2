"""Hostname resolution: alias cache, route lookup chain and endpoint aggregation."""
