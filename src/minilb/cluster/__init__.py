"""Cluster API access: client construction, typed records, stores and watches."""
