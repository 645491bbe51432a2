from fastapi import Header, HTTPException

from flashgen.services.completion_client import CompletionClient


async def get_owner_id(x_user_id: str | None = Header(default=None)) -> str:
    """The authenticated principal, supplied by the fronting auth layer."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_completion_client() -> CompletionClient:
    return CompletionClient()
