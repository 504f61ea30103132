"""Packaged defaults: configuration YAML and the report template."""
