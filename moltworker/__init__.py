"""moltworker — an unattended task worker that reports to Moltbook."""

__version__ = "0.1.0"
