from typing import Dict, List, Union


class ValidationFailed(Exception):
    """Field-keyed validation error raised by the application itself."""

    def __init__(self, messages: Dict[str, Union[str, List[str]]]):
        self.errors = {
            field: [message] if isinstance(message, str) else list(message)
            for field, message in messages.items()
        }
        first = next(iter(self.errors.values()))[0]
        super().__init__(first)


class LockTimeout(Exception):
    def __init__(self, name: str, wait: float):
        self.name = name
        self.wait = wait
        super().__init__(f"Could not acquire lock {name!r} within {wait}s")
