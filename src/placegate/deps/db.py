from fastapi import Request

from placegate.core.store import Store


async def get_store(request: Request) -> Store:
    # single instance created in create_app(); never a module global
    return request.app.state.store
