"""Script to refresh every model still in training, without the Celery beat."""

import asyncio

from lorastudio.clients.replicate import close_replicate_client
from lorastudio.db.session import async_session_maker, engine
from lorastudio.services.training_service import training_service


async def main():
    try:
        changed = await training_service.refresh_processing_models(async_session_maker)
    finally:
        await close_replicate_client()
        await engine.dispose()

    print(f"{changed} model(s) changed status")


if __name__ == "__main__":
    asyncio.run(main())
