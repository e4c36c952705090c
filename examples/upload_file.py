"""
Uploading a local file through the upload negotiation endpoint.

The server decides how the bytes travel (single PUT, Content-Range blocks
or S3 multipart); the uploader follows its plan and reports progress.

Usage: python examples/upload_file.py <path> [endpoint]
"""

import asyncio
import mimetypes
import os
import sys

import anyio
from dotenv import load_dotenv

from klbfw import AsyncRestContext, Config, RestContext, Token, upload, upload_async

load_dotenv()

access_token = os.getenv("KLBFW_ACCESS_TOKEN")
assert access_token, "Set KLBFW_ACCESS_TOKEN"

config = Config.from_env()
token = Token(
    access_token=access_token,
    refresh_token=os.getenv("KLBFW_REFRESH_TOKEN", ""),
    client_id=os.getenv("KLBFW_CLIENT_ID", ""),
)


class Progress:
    def __init__(self) -> None:
        self.sent = 0

    def __call__(self, delta: int) -> None:
        self.sent += delta
        print(f"  {self.sent} bytes sent", end="\r")


def sync_example(path: str, endpoint: str):
    print(f"=== Sync upload of {path} ===")
    mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    with RestContext(config, token=token) as ctx, open(path, "rb") as f:
        env = upload(
            ctx,
            endpoint,
            "POST",
            {"filename": os.path.basename(path)},
            f,
            mime_type,
            Progress(),
        )
    print(f"\ncompleted: {env.data}")


async def async_example(path: str, endpoint: str):
    print(f"=== Async upload of {path} ===")
    mime_type = mimetypes.guess_type(path)[0] or "application/octet-stream"
    async with AsyncRestContext(config, token=token) as ctx:
        async with await anyio.open_file(path, "rb") as f:
            env = await upload_async(
                ctx,
                endpoint,
                "POST",
                {"filename": os.path.basename(path)},
                f,
                mime_type,
                Progress(),
            )
    print(f"\ncompleted: {env.data}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        sys.exit("usage: upload_file.py <path> [endpoint]")
    file_path = sys.argv[1]
    target = sys.argv[2] if len(sys.argv) > 2 else "Drive/Item:upload"
    sync_example(file_path, target)
    asyncio.run(async_example(file_path, target))
