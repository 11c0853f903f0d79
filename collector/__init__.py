"""BitLocker diagnostic collection: one-shot, per-step isolated, bundled for offline triage."""

__version__ = "0.1.0"
