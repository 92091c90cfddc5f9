"""Compliance evidence toolkit.

Produces a publicly verifiable record that a private delivery pipeline ran,
passed its required tests and deployed signed artifacts:

- evidence_producer: evaluates source assertions into per-suite manifests
- manifests: merges and validates those manifests
- source_run: confirms a dispatch payload against the CI platform
- publishing: composes current/evidence.json and archives history snapshots
- policy: builds policy input, reads provenance, signs the policy package
- public_verifier: re-checks published evidence from the consumer side
"""

__version__ = "0.1.0"
