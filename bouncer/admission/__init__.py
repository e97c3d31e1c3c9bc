"""Admission core: credentials, candidate resolution, roles and orchestration.

Modules here depend only on ports (record store, platform client); adapters
live in `bouncer.records` and `bouncer.platform`.
"""
