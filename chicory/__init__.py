"""
Chicory: transactional workload harness

Drives a database under test with randomized read/write transactions and
records every outcome as ok (applied), fail (not applied) or info
(unknown) for a consistency checker.
"""

__version__ = "0.1.0"
