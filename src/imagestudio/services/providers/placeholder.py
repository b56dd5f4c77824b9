"""Provider entry that can hold a key but cannot run generations yet."""

from typing import Any, NoReturn

from imagestudio.services.exceptions import ProviderError

PLACEHOLDER_ERROR = (
    "OpenRouter Seedream 4.5 is a placeholder provider and does not support generation yet."
)


class PlaceholderAdapter:
    """Every operation fails with PLACEHOLDER_ERROR."""

    def __init__(self, message: str = PLACEHOLDER_ERROR):
        self.message = message

    def _fail(self) -> NoReturn:
        raise ProviderError(self.message)

    async def submit(self, **kwargs: Any):
        self._fail()

    async def poll_status(self, **kwargs: Any):
        self._fail()

    async def get_result(self, **kwargs: Any):
        self._fail()

    async def cancel(self, **kwargs: Any):
        self._fail()
