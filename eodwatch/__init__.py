"""eodwatch — scheduler health tracking and Slack status notifications."""

__version__ = "0.1.0"
