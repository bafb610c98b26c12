"""
Access Guard - lock malicious clients found in nginx access logs.

This package provides:
- log_parser: Parse nginx access log lines
- condition: Rule condition language (parser)
- evaluator: Evaluate conditions against request fields
- rules: Bad rules (flag) and good rules (veto)
- firewall: Run (or dry-run) firewall commands
- lockout: Lock addresses with ufw, exponential backoff, expiry
- store: Line deduplication and the state file
- detector: One analysis pass over the log
- logger: JSON logging and alerts
- config: Central configuration
"""

__version__ = "0.3.0"
