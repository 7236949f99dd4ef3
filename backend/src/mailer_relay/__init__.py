"""Form submission relay between static sites and the mailer API."""

__version__ = "1.0.0"
