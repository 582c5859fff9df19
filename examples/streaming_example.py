"""
Streaming chat completion example

使用前请设置环境变量:
    export MARKETPLACE_API_KEY=your_api_key
    export MARKETPLACE_BASE_URL=http://localhost:3001/api/v1  # 可选
"""

import asyncio
import os

from marketplace_router import ClientConfig, DispatchError, MarketplaceClient


async def main():
    api_key = os.getenv("MARKETPLACE_API_KEY")
    if not api_key:
        print("请设置 MARKETPLACE_API_KEY 环境变量")
        return

    config = ClientConfig(api_key=api_key)
    base_url = os.getenv("MARKETPLACE_BASE_URL")
    if base_url:
        config = config.with_overrides(base_url=base_url)

    async with MarketplaceClient(config) as client:
        try:
            stream = await client.create_streaming_chat_completion(
                [{"role": "user", "content": "Count from one to five."}],
                {"model": "gpt-4o-mini"},
            )
        except DispatchError as e:
            print(f"错误: {e}")
            return

        # Leaving the block releases the connection even on early exit
        async with stream:
            async for chunk in stream:
                print(chunk.content, end="", flush=True)

        print(f"\n\nChunks: {stream.chunk_count}, elapsed: {stream.elapsed_ms:.0f} ms")
        if stream.usage is not None:
            print(f"Usage: {stream.usage.to_dict()}")
        print(f"Stats: {client.get_usage_stats().to_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
