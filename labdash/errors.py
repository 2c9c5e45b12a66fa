"""
LabDash Webhooks - Error types
"""


class WebhookError(Exception):
    """Rejected or failed webhook, rendered as the failure envelope."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
