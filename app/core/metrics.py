# app/core/metrics.py
"""Prometheus counters for the correlation engine"""
from prometheus_client import Counter

OBSERVABLES_CREATED = Counter(
    'correlator_observables_created_total',
    'Canonical observables created',
    ['type']
)

OBSERVABLE_LINKS = Counter(
    'correlator_observable_links_total',
    'Observable candidates linked to evidence'
)

INGESTION_FAILURES = Counter(
    'correlator_ingestion_failures_total',
    'Evidence ingestions aborted by a storage failure'
)

AUDIT_FAILURES = Counter(
    'correlator_audit_failures_total',
    'Audit log writes that failed and were dropped'
)
