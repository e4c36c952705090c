"""
Calling REST endpoints with a bearer token or an API key.

Set KLBFW_HOST to point at your backend, then either:
- KLBFW_ACCESS_TOKEN (plus KLBFW_REFRESH_TOKEN and KLBFW_CLIENT_ID for renewal), or
- KLBFW_API_KEY_ID and KLBFW_API_KEY_SECRET
"""

import asyncio
import os

from dotenv import load_dotenv

from klbfw import ApiKey, AsyncRestContext, Config, RestContext, Time, Token

load_dotenv()

config = Config.from_env()


def credentials() -> dict:
    key_id = os.getenv("KLBFW_API_KEY_ID")
    secret = os.getenv("KLBFW_API_KEY_SECRET")
    if key_id and secret:
        return {"api_key": ApiKey(key_id, secret)}

    access_token = os.getenv("KLBFW_ACCESS_TOKEN")
    assert access_token, "Set KLBFW_ACCESS_TOKEN or KLBFW_API_KEY_ID/KLBFW_API_KEY_SECRET"
    return {
        "token": Token(
            access_token=access_token,
            refresh_token=os.getenv("KLBFW_REFRESH_TOKEN", ""),
            client_id=os.getenv("KLBFW_CLIENT_ID", ""),
        )
    }


def sync_example():
    print("=== Sync ===")
    with RestContext(config, **credentials()) as ctx:
        # Echo endpoint; returns its input in the envelope data
        env = ctx.do_request("Misc/Debug:params", "GET", {"hello": "world"})
        print(f"result: {env.result}, data: {env.data}")

        now = ctx.apply("Misc/Debug:serverTime", "GET", into=Time)
        print(f"server time: {now.iso()} UTC")


async def async_example():
    print("=== Async ===")
    async with AsyncRestContext(config, **credentials()) as ctx:
        env = await ctx.do_request("Misc/Debug:params", "GET", {"hello": "async"})
        print(f"result: {env.result}, data: {env.data}")


if __name__ == "__main__":
    sync_example()
    asyncio.run(async_example())
