"""Exceptions that carry more than a status code and a message; translated in atelier.main."""


class RateLimitExceededError(Exception):
    def __init__(self, action: str, retry_after: int):
        super().__init__(f"Rate limit exceeded for {action}")
        self.action = action
        self.retry_after = retry_after


class AccessTerminatedError(Exception):
    """An admin probed a permission they do not hold; their privileges are already gone."""

    message = "Your admin access has been revoked due to unauthorized access attempt."

    def __init__(self, permission: str):
        super().__init__(f"Access terminated on {permission}")
        self.permission = permission
