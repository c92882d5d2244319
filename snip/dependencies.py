from typing import AsyncGenerator

from snip.services import ResolutionService


async def get_service() -> AsyncGenerator[ResolutionService, None]:
    from snip.app import app

    yield app.state.service
