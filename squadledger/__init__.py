"""SquadLedger: project, task and pledge ledger engine for squad-funded work."""

__version__ = "0.1.0"
