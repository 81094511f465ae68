import logging
import sys

import uvicorn

from esg_client.config import HOST, PORT

if sys.platform == "win32":
    import asyncio
    asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "esg_client.server:app",
        host=HOST,
        port=PORT,
        reload=False,
    )
